"""Collect PostgreSQL log events and query samples from Amazon RDS."""
