"""Concrete pipelines built on the etl framework"""
