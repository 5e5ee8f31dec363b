__version__ = "0.4.0"
__description__ = "jarest : JSON:API resource server for schema-driven record sources"
