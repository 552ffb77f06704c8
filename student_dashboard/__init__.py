"""Student Data Dashboard: Excel ingestion, dashboard analytics and assistant answer parsing."""
