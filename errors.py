"""
Errors raised by the catalog service.

The HTTP layer maps each kind to a status code in one place (see main.py);
the service itself never deals with HTTP.
"""
from typing import Optional


class CatalogError(Exception):
    default_message = "Catalog error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(CatalogError):
    default_message = "Not found"


class DuplicateName(CatalogError):
    default_message = "Name already exists"


class DuplicateCode(CatalogError):
    default_message = "Product with this code already exists"


class ParentNotFound(CatalogError):
    default_message = "Parent category not found"


class CategoryNotFound(CatalogError):
    default_message = "Category not found"


class SubCategoryMismatch(CatalogError):
    default_message = "Sub-category not found or does not belong to the selected category"


class VariationNotFound(CatalogError):
    default_message = "Variation not found"


class ValidationError(CatalogError):
    default_message = "Invalid input"


class StorageFailure(CatalogError):
    default_message = "Server error"
