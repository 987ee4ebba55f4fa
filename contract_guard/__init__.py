"""Contract regression testing for REST APIs described by OpenAPI/Swagger."""

__version__ = "0.1.0"
