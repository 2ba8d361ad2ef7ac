"""DuckDB persistence: schema, catalog reads, price series and extremes."""
