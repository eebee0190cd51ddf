"""
Login analytics pipeline.

Copies dealer logon/logoff events from every SQL Server shard into the
user_connection_history and user_connection_log PostgreSQL tables.
"""
