"""
Catalog consistency service.

Keeps categories, subcategories and products (with their embedded
variations) consistent with each other on every write. Uniqueness is
enforced by unique indexes (database.ensure_indexes); the reads done
before each insert only exist to give a clearer error first.
"""
import json
import logging
import math
import re
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from bson import ObjectId
from pydantic import ValidationError as SchemaError
from pymongo import ReturnDocument
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from database import now
from errors import (
    CatalogError,
    CategoryNotFound,
    DuplicateCode,
    DuplicateName,
    NotFound,
    ParentNotFound,
    StorageFailure,
    SubCategoryMismatch,
    ValidationError,
    VariationNotFound,
)
from schemas import Category, Product, SubCategory, Variation

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10

# -----------------
# Helpers
# -----------------

def to_object_id(value: Any) -> Optional[ObjectId]:
    """Return an ObjectId for value, or None when it cannot be one."""
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def to_public(value: Any) -> Any:
    """Turn a stored document into plain JSON data (`_id` becomes `id`)."""
    if isinstance(value, dict):
        out = {}
        for key, item in value.items():
            if key == "_id":
                out["id"] = str(item)
            else:
                out[key] = to_public(item)
        return out
    if isinstance(value, list):
        return [to_public(item) for item in value]
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.strip()


def _validate(model, fields: Mapping[str, Any]):
    """Check fields against a collection schema, raising ValidationError on failure."""
    try:
        return model.model_validate(dict(fields))
    except SchemaError as exc:
        error = exc.errors()[0]
        field = ".".join(str(part) for part in error["loc"])
        raise ValidationError(f"Invalid {field}: {error['msg']}")


def _same_ref(value: Optional[str], current: Any) -> bool:
    return current is not None and value == str(current)


@contextmanager
def _storage(operation: str, target: Any = None, duplicate: CatalogError = None):
    """Translate pymongo errors raised inside the block into catalog errors."""
    try:
        yield
    except DuplicateKeyError as exc:
        if duplicate is None:
            logger.error("Unexpected duplicate key during %s (target=%s): %s", operation, target, exc)
            raise StorageFailure() from exc
        raise duplicate from exc
    except PyMongoError as exc:
        logger.error("Storage failure during %s (target=%s): %s", operation, target, exc)
        raise StorageFailure() from exc


def parse_variations(raw: Union[None, str, Iterable[Mapping[str, Any]]]) -> List[Dict[str, Any]]:
    """Validate a variation list (a JSON string or a list of mappings).

    Every entry gets a fresh `_id`; nothing sent by the client is kept as
    an identifier.
    """
    if raw is None or raw == "":
        return []
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError:
            raise ValidationError("Invalid variations payload")
    if not isinstance(raw, list):
        raise ValidationError("Variations must be a list")
    parsed = []
    for entry in raw:
        if not isinstance(entry, Mapping):
            raise ValidationError("Each variation must be an object")
        parsed.append(_build_variation(entry))
    return parsed


def _build_variation(fields: Mapping[str, Any], variation_id: ObjectId = None) -> Dict[str, Any]:
    data = {k: v for k, v in fields.items() if k not in ("_id", "id")}
    variation = _validate(Variation, data)
    doc = {"_id": variation_id or ObjectId()}
    doc.update(variation.model_dump())
    doc["size"] = _clean(doc["size"])
    doc["color"] = _clean(doc["color"])
    return doc


def _find_variation(product: Dict[str, Any], variation_id: Optional[ObjectId]) -> Optional[Dict[str, Any]]:
    if variation_id is None:
        return None
    for variation in product.get("variations") or []:
        if variation.get("_id") == variation_id:
            return variation
    return None


class CatalogService:
    """CRUD over categories, subcategories and products.

    Every check runs before the write it guards, so a failing check leaves
    the store untouched. Authorization is the caller's job.
    """

    def __init__(self, db: Database):
        self.categories: Collection = db["category"]
        self.subcategories: Collection = db["subcategory"]
        self.products: Collection = db["product"]

    def _populate(self, docs: List[Dict[str, Any]], field: str, collection: Collection) -> List[Dict[str, Any]]:
        """Replace the reference in `field` with `{id, name}` (None when dangling)."""
        ids = {d[field] for d in docs if isinstance(d.get(field), ObjectId)}
        names = {}
        if ids:
            for ref in collection.find({"_id": {"$in": list(ids)}}, {"name": 1}):
                names[ref["_id"]] = {"id": str(ref["_id"]), "name": ref.get("name")}
        for doc in docs:
            if doc.get(field) is not None:
                doc[field] = names.get(doc[field])
        return docs

    # -----------------
    # Categories
    # -----------------
    def create_category(self, name: str, description: Optional[str] = None, image: Optional[str] = None) -> Dict[str, Any]:
        name = _clean(name)
        _validate(Category, {"name": name, "description": description, "image": image})
        duplicate = DuplicateName("Category already exists")
        stamp = now()
        doc = {
            "_id": ObjectId(),
            "name": name,
            "description": _clean(description),
            "image": image,
            "createdAt": stamp,
            "updatedAt": stamp,
        }
        with _storage("create_category", name, duplicate):
            if self.categories.find_one({"name": name}):
                raise duplicate
            self.categories.insert_one(doc)
        logger.info("Created category %s (%s)", doc["_id"], name)
        return to_public(doc)

    def get_categories(self) -> List[Dict[str, Any]]:
        with _storage("get_categories"):
            return [to_public(doc) for doc in self.categories.find({})]

    def get_category_by_id(self, category_id: str) -> Dict[str, Any]:
        oid = to_object_id(category_id)
        with _storage("get_category_by_id", category_id):
            doc = self.categories.find_one({"_id": oid}) if oid else None
        if not doc:
            raise NotFound("Category not found")
        return to_public(doc)

    def update_category(self, category_id: str, name: Optional[str] = None, description: Optional[str] = None,
                        image: Optional[str] = None) -> Dict[str, Any]:
        """Apply the supplied fields; None means "leave unchanged"."""
        oid = to_object_id(category_id)
        if oid is None:
            raise NotFound("Category not found")
        changes: Dict[str, Any] = {}
        if name is not None:
            changes["name"] = _clean(name)
            if not changes["name"]:
                raise ValidationError("Category name is required")
        if description is not None:
            changes["description"] = _clean(description)
        if image is not None:
            changes["image"] = image
        changes["updatedAt"] = now()
        with _storage("update_category", category_id, DuplicateName("Category already exists")):
            doc = self.categories.find_one_and_update(
                {"_id": oid}, {"$set": changes}, return_document=ReturnDocument.AFTER
            )
        if not doc:
            raise NotFound("Category not found")
        logger.info("Updated category %s", category_id)
        return to_public(doc)

    def delete_category(self, category_id: str) -> None:
        # Subcategories and products pointing at this category are left as they are.
        oid = to_object_id(category_id)
        with _storage("delete_category", category_id):
            deleted = self.categories.delete_one({"_id": oid}).deleted_count if oid else 0
        if not deleted:
            raise NotFound("Category not found")
        logger.info("Deleted category %s", category_id)

    # -----------------
    # Subcategories
    # -----------------
    def create_sub_category(self, name: str, category: str, description: Optional[str] = None) -> Dict[str, Any]:
        name = _clean(name)
        _validate(SubCategory, {"name": name, "description": description, "category": category})
        category_oid = to_object_id(category)
        duplicate = DuplicateName("Sub-category already exists in this category")
        stamp = now()
        doc = {
            "_id": ObjectId(),
            "name": name,
            "description": _clean(description),
            "category": category_oid,
            "createdAt": stamp,
            "updatedAt": stamp,
        }
        with _storage("create_sub_category", name, duplicate):
            if category_oid is None or not self.categories.find_one({"_id": category_oid}):
                raise ParentNotFound()
            if self.subcategories.find_one({"name": name, "category": category_oid}):
                raise duplicate
            self.subcategories.insert_one(doc)
        logger.info("Created sub-category %s (%s) under %s", doc["_id"], name, category_oid)
        return to_public(doc)

    def get_sub_categories(self) -> List[Dict[str, Any]]:
        with _storage("get_sub_categories"):
            docs = self._populate(list(self.subcategories.find({})), "category", self.categories)
        return to_public(docs)

    def get_sub_categories_by_category(self, category_id: str) -> List[Dict[str, Any]]:
        oid = to_object_id(category_id)
        if oid is None:
            return []
        with _storage("get_sub_categories_by_category", category_id):
            docs = self._populate(list(self.subcategories.find({"category": oid})), "category", self.categories)
        return to_public(docs)

    def get_sub_category_by_id(self, sub_category_id: str) -> Dict[str, Any]:
        oid = to_object_id(sub_category_id)
        with _storage("get_sub_category_by_id", sub_category_id):
            doc = self.subcategories.find_one({"_id": oid}) if oid else None
            if not doc:
                raise NotFound("Sub-category not found")
            self._populate([doc], "category", self.categories)
        return to_public(doc)

    def update_sub_category(self, sub_category_id: str, name: Optional[str] = None, description: Optional[str] = None,
                            category: Optional[str] = None) -> Dict[str, Any]:
        oid = to_object_id(sub_category_id)
        duplicate = DuplicateName("Sub-category already exists in this category")
        with _storage("update_sub_category", sub_category_id, duplicate):
            current = self.subcategories.find_one({"_id": oid}) if oid else None
            if not current:
                raise NotFound("Sub-category not found")

            changes: Dict[str, Any] = {"updatedAt": now()}
            if category and not _same_ref(category, current.get("category")):
                category_oid = to_object_id(category)
                if category_oid is None or not self.categories.find_one({"_id": category_oid}):
                    raise ParentNotFound()
                changes["category"] = category_oid
            if _clean(name):
                changes["name"] = _clean(name)
            if _clean(description):
                changes["description"] = _clean(description)

            doc = self.subcategories.find_one_and_update(
                {"_id": oid}, {"$set": changes}, return_document=ReturnDocument.AFTER
            )
        if not doc:
            raise NotFound("Sub-category not found")
        logger.info("Updated sub-category %s", sub_category_id)
        return to_public(doc)

    def delete_sub_category(self, sub_category_id: str) -> None:
        # Products keep their subCategory reference.
        oid = to_object_id(sub_category_id)
        with _storage("delete_sub_category", sub_category_id):
            deleted = self.subcategories.delete_one({"_id": oid}).deleted_count if oid else 0
        if not deleted:
            raise NotFound("Sub-category not found")
        logger.info("Deleted sub-category %s", sub_category_id)

    # -----------------
    # Products
    # -----------------
    def _check_sub_category(self, sub_category: str, category_oid: Any) -> ObjectId:
        sub_oid = to_object_id(sub_category)
        if sub_oid is None or not self.subcategories.find_one({"_id": sub_oid, "category": category_oid}):
            raise SubCategoryMismatch()
        return sub_oid

    def create_product(self, name: str, productCode: str, description: str, category: str,
                       subCategory: Optional[str] = None, variations: Any = None,
                       images: Optional[List[str]] = None) -> Dict[str, Any]:
        """Create a product.

        `images` are paths already stored by the upload layer; `variations`
        is a JSON string or a list of mappings.
        """
        name = _clean(name)
        code = _clean(productCode)
        _validate(Product, {"name": name, "productCode": code, "description": description,
                            "category": category, "subCategory": subCategory, "images": list(images or [])})

        duplicate = DuplicateCode()
        with _storage("create_product", code, duplicate):
            if self.products.find_one({"productCode": code}):
                raise duplicate
            category_oid = to_object_id(category)
            if category_oid is None or not self.categories.find_one({"_id": category_oid}):
                raise CategoryNotFound()
            sub_oid = self._check_sub_category(subCategory, category_oid) if subCategory else None

            stamp = now()
            doc = {
                "_id": ObjectId(),
                "name": name,
                "productCode": code,
                "description": description,
                "images": list(images or []),
                "category": category_oid,
                "subCategory": sub_oid,
                "variations": parse_variations(variations),
                "createdAt": stamp,
                "updatedAt": stamp,
            }
            self.products.insert_one(doc)
        logger.info("Created product %s (%s)", doc["_id"], code)
        return to_public(doc)

    def get_products(self, page: int = 1, page_size: int = DEFAULT_PAGE_SIZE, category: Optional[str] = None,
                     sub_category: Optional[str] = None, keyword: Optional[str] = None) -> Dict[str, Any]:
        """One page of products plus `page`, `pages` and `count`.

        Filters combine with AND; `keyword` is a case-insensitive substring
        of the product name.
        """
        if not page or page < 1:
            page = 1
        if not page_size or page_size < 1:
            page_size = DEFAULT_PAGE_SIZE

        query: Dict[str, Any] = {}
        if category:
            # A malformed id stays a string and simply matches nothing.
            query["category"] = to_object_id(category) or category
        if sub_category:
            query["subCategory"] = to_object_id(sub_category) or sub_category
        if keyword:
            query["name"] = {"$regex": re.escape(keyword), "$options": "i"}

        with _storage("get_products"):
            count = self.products.count_documents(query)
            cursor = self.products.find(query).sort("_id", 1).skip(page_size * (page - 1)).limit(page_size)
            docs = list(cursor)
            self._populate(docs, "category", self.categories)
            self._populate(docs, "subCategory", self.subcategories)

        return {
            "items": to_public(docs),
            "page": page,
            "pages": math.ceil(count / page_size),
            "count": count,
        }

    def get_product_by_id(self, product_id: str) -> Dict[str, Any]:
        oid = to_object_id(product_id)
        with _storage("get_product_by_id", product_id):
            doc = self.products.find_one({"_id": oid}) if oid else None
            if not doc:
                raise NotFound("Product not found")
            self._populate([doc], "category", self.categories)
            self._populate([doc], "subCategory", self.subcategories)
        return to_public(doc)

    def update_product(self, product_id: str, name: Optional[str] = None, productCode: Optional[str] = None,
                       description: Optional[str] = None, category: Optional[str] = None,
                       subCategory: Optional[str] = None, variations: Any = None,
                       images: Optional[List[str]] = None) -> Dict[str, Any]:
        """Fill-if-provided update.

        Empty or missing scalars keep their value, new images are appended,
        and a supplied variation list replaces the old one wholesale.
        """
        oid = to_object_id(product_id)
        duplicate = DuplicateCode()
        with _storage("update_product", product_id, duplicate):
            current = self.products.find_one({"_id": oid}) if oid else None
            if not current:
                raise NotFound("Product not found")

            changes: Dict[str, Any] = {}
            code = _clean(productCode)
            if code and code != current.get("productCode"):
                if self.products.find_one({"productCode": code, "_id": {"$ne": oid}}):
                    raise duplicate
                changes["productCode"] = code

            effective_category = current.get("category")
            if category:
                if not _same_ref(category, current.get("category")):
                    category_oid = to_object_id(category)
                    if category_oid is None or not self.categories.find_one({"_id": category_oid}):
                        raise CategoryNotFound()
                    changes["category"] = category_oid
                    effective_category = category_oid

            if subCategory and not _same_ref(subCategory, current.get("subCategory")):
                changes["subCategory"] = self._check_sub_category(subCategory, effective_category)

            if _clean(name):
                changes["name"] = _clean(name)
            if description:
                changes["description"] = description
            if variations is not None and variations != "":
                changes["variations"] = parse_variations(variations)
            changes["updatedAt"] = now()

            update: Dict[str, Any] = {"$set": changes}
            if images:
                update["$push"] = {"images": {"$each": list(images)}}
            doc = self.products.find_one_and_update({"_id": oid}, update, return_document=ReturnDocument.AFTER)
        if not doc:
            raise NotFound("Product not found")
        logger.info("Updated product %s (%s)", product_id, sorted(k for k in changes if k != "updatedAt"))
        return to_public(doc)

    def delete_product(self, product_id: str) -> None:
        # Variations live inside the product document and go with it.
        oid = to_object_id(product_id)
        with _storage("delete_product", product_id):
            deleted = self.products.delete_one({"_id": oid}).deleted_count if oid else 0
        if not deleted:
            raise NotFound("Product not found")
        logger.info("Deleted product %s", product_id)

    # -----------------
    # Variations
    # -----------------
    def add_product_variation(self, product_id: str, price: Any, size: Optional[str] = None,
                              color: Optional[str] = None, discount: Any = 0, stock: Any = 0) -> Dict[str, Any]:
        oid = to_object_id(product_id)
        if oid is None:
            raise NotFound("Product not found")
        variation = _build_variation({
            "size": size,
            "color": color,
            "price": price,
            "discount": discount or 0,
            "stock": stock or 0,
        })
        with _storage("add_product_variation", product_id):
            doc = self.products.find_one_and_update(
                {"_id": oid},
                {"$push": {"variations": variation}, "$set": {"updatedAt": now()}},
                return_document=ReturnDocument.AFTER,
            )
        if not doc:
            raise NotFound("Product not found")
        logger.info("Added variation %s to product %s", variation["_id"], product_id)
        return to_public(doc)

    def update_product_variation(self, product_id: str, variation_id: str, fields: Mapping[str, Any]) -> Dict[str, Any]:
        """Merge `fields` into one variation.

        price, discount and stock are replaced whenever the key is present
        (0 included); size and color only when non-empty.
        """
        oid = to_object_id(product_id)
        vid = to_object_id(variation_id)
        with _storage("update_product_variation", f"{product_id}/{variation_id}"):
            product = self.products.find_one({"_id": oid}) if oid else None
            if not product:
                raise NotFound("Product not found")
            variation = _find_variation(product, vid)
            if variation is None:
                raise VariationNotFound()

            merged = dict(variation)
            for key in ("size", "color"):
                if fields.get(key):
                    merged[key] = fields[key]
            for key in ("price", "discount", "stock"):
                if key in fields and fields[key] is not None:
                    merged[key] = fields[key]
            merged = _build_variation(merged, variation_id=vid)

            result = self.products.update_one(
                {"_id": oid, "variations._id": vid},
                {"$set": {"variations.$": merged, "updatedAt": now()}},
            )
            if not result.matched_count:
                raise VariationNotFound()
            doc = self.products.find_one({"_id": oid})
        if not doc:
            raise NotFound("Product not found")
        logger.info("Updated variation %s on product %s", variation_id, product_id)
        return to_public(doc)

    def delete_product_variation(self, product_id: str, variation_id: str) -> Dict[str, Any]:
        oid = to_object_id(product_id)
        vid = to_object_id(variation_id)
        with _storage("delete_product_variation", f"{product_id}/{variation_id}"):
            product = self.products.find_one({"_id": oid}) if oid else None
            if not product:
                raise NotFound("Product not found")
            if _find_variation(product, vid) is None:
                raise VariationNotFound()
            doc = self.products.find_one_and_update(
                {"_id": oid},
                {"$pull": {"variations": {"_id": vid}}, "$set": {"updatedAt": now()}},
                return_document=ReturnDocument.AFTER,
            )
        if not doc:
            raise NotFound("Product not found")
        logger.info("Removed variation %s from product %s", variation_id, product_id)
        return to_public(doc)
