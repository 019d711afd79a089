import logging
import os
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database

import auth
import uploads
from auth import get_current_user, get_db, login_user, public_user, register_user, require_admin
from catalog import DEFAULT_PAGE_SIZE, CatalogService
from database import db, ensure_indexes
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

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("catalog.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    os.makedirs(uploads.UPLOAD_DIR, exist_ok=True)
    if db is not None:
        ensure_indexes(db)
    else:
        logger.warning("DATABASE_URL/DATABASE_NAME not set; database features are unavailable")
    yield


# App setup
app = FastAPI(title="Catalog API", version="1.0.0", docs_url="/api-docs", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.mount("/uploads", StaticFiles(directory=uploads.UPLOAD_DIR, check_dir=False), name="uploads")


ERROR_STATUS = {
    NotFound: 404,
    ParentNotFound: 404,
    CategoryNotFound: 404,
    SubCategoryMismatch: 404,
    VariationNotFound: 404,
    DuplicateName: 400,
    DuplicateCode: 400,
    ValidationError: 400,
    StorageFailure: 500,
}


@app.exception_handler(CatalogError)
async def catalog_error_handler(request: Request, exc: CatalogError):
    status = ERROR_STATUS.get(type(exc), 500)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status, content={"message": exc.message})


def get_catalog(database: Database = Depends(get_db)) -> CatalogService:
    return CatalogService(database)


# Schemas (request bodies)
class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=80)
    email: EmailStr
    password: str


class AdminRegisterRequest(RegisterRequest):
    secret: str


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class SubCategoryIn(BaseModel):
    name: str
    description: Optional[str] = None
    category: str


class SubCategoryUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None


class VariationIn(BaseModel):
    size: Optional[str] = None
    color: Optional[str] = None
    price: float
    discount: Optional[float] = None
    stock: Optional[int] = None


class VariationUpdate(BaseModel):
    size: Optional[str] = None
    color: Optional[str] = None
    price: Optional[float] = None
    discount: Optional[float] = None
    stock: Optional[int] = None


# Health and helpers
@app.get("/")
def root():
    return {"message": "API is running..."}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if db is not None:
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
            response["collections"] = db.list_collection_names()[:10]
    except Exception as e:
        response["database"] = f"⚠️ Connected but error: {str(e)[:80]}"
    return response


# Users
@app.post("/api/users", status_code=201)
def register(payload: RegisterRequest, database: Database = Depends(get_db)):
    return register_user(database, payload.name, payload.email, payload.password)


@app.post("/api/users/admin", status_code=201)
def register_admin(payload: AdminRegisterRequest, database: Database = Depends(get_db)):
    if not auth.ADMIN_SECRET or payload.secret != auth.ADMIN_SECRET:
        raise HTTPException(status_code=403, detail="Invalid secret key")
    return register_user(database, payload.name, payload.email, payload.password, role="admin")


@app.post("/api/users/login")
def login(payload: LoginRequest, database: Database = Depends(get_db)):
    return login_user(database, payload.email, payload.password)


@app.get("/api/users/profile")
def profile(current_user: dict = Depends(get_current_user)):
    return public_user(current_user)


# Categories
@app.get("/api/categories")
def list_categories(catalog: CatalogService = Depends(get_catalog)):
    return catalog.get_categories()


@app.get("/api/categories/{category_id}")
def get_category(category_id: str, catalog: CatalogService = Depends(get_catalog)):
    return catalog.get_category_by_id(category_id)


@app.post("/api/categories", status_code=201)
def create_category(name: str = Form(...), description: Optional[str] = Form(None),
                    image: Optional[UploadFile] = File(None), admin: dict = Depends(require_admin),
                    catalog: CatalogService = Depends(get_catalog)):
    path = uploads.save_upload(image, "image") if image is not None and image.filename else None
    return catalog.create_category(name, description, path)


@app.put("/api/categories/{category_id}")
def update_category(category_id: str, name: Optional[str] = Form(None), description: Optional[str] = Form(None),
                    image: Optional[UploadFile] = File(None), admin: dict = Depends(require_admin),
                    catalog: CatalogService = Depends(get_catalog)):
    path = uploads.save_upload(image, "image") if image is not None and image.filename else None
    return catalog.update_category(category_id, name=name, description=description, image=path)


@app.delete("/api/categories/{category_id}")
def delete_category(category_id: str, admin: dict = Depends(require_admin),
                    catalog: CatalogService = Depends(get_catalog)):
    catalog.delete_category(category_id)
    return {"message": "Category removed"}


# Subcategories
@app.get("/api/subcategories")
def list_sub_categories(catalog: CatalogService = Depends(get_catalog)):
    return catalog.get_sub_categories()


@app.get("/api/subcategories/category/{category_id}")
def list_sub_categories_by_category(category_id: str, catalog: CatalogService = Depends(get_catalog)):
    return catalog.get_sub_categories_by_category(category_id)


@app.get("/api/subcategories/{sub_category_id}")
def get_sub_category(sub_category_id: str, catalog: CatalogService = Depends(get_catalog)):
    return catalog.get_sub_category_by_id(sub_category_id)


@app.post("/api/subcategories", status_code=201)
def create_sub_category(payload: SubCategoryIn, admin: dict = Depends(require_admin),
                        catalog: CatalogService = Depends(get_catalog)):
    return catalog.create_sub_category(payload.name, payload.category, payload.description)


@app.put("/api/subcategories/{sub_category_id}")
def update_sub_category(sub_category_id: str, payload: SubCategoryUpdate, admin: dict = Depends(require_admin),
                        catalog: CatalogService = Depends(get_catalog)):
    return catalog.update_sub_category(sub_category_id, **payload.model_dump())


@app.delete("/api/subcategories/{sub_category_id}")
def delete_sub_category(sub_category_id: str, admin: dict = Depends(require_admin),
                        catalog: CatalogService = Depends(get_catalog)):
    catalog.delete_sub_category(sub_category_id)
    return {"message": "Sub-category removed"}


# Products
@app.get("/api/products")
def list_products(page: int = 1, pageSize: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=100),
                  category: Optional[str] = None, subCategory: Optional[str] = None,
                  keyword: Optional[str] = None, catalog: CatalogService = Depends(get_catalog)):
    return catalog.get_products(page=page, page_size=pageSize, category=category,
                                sub_category=subCategory, keyword=keyword)


@app.get("/api/products/{product_id}")
def get_product(product_id: str, catalog: CatalogService = Depends(get_catalog)):
    return catalog.get_product_by_id(product_id)


@app.post("/api/products", status_code=201)
def create_product(name: str = Form(...), productCode: str = Form(...), description: str = Form(...),
                   category: str = Form(...), subCategory: Optional[str] = Form(None),
                   variations: Optional[str] = Form(None), images: Optional[List[UploadFile]] = File(None),
                   admin: dict = Depends(require_admin), catalog: CatalogService = Depends(get_catalog)):
    paths = uploads.save_uploads(images, "images")
    return catalog.create_product(name, productCode, description, category,
                                  subCategory=subCategory, variations=variations, images=paths)


@app.put("/api/products/{product_id}")
def update_product(product_id: str, name: Optional[str] = Form(None), productCode: Optional[str] = Form(None),
                   description: Optional[str] = Form(None), category: Optional[str] = Form(None),
                   subCategory: Optional[str] = Form(None), variations: Optional[str] = Form(None),
                   images: Optional[List[UploadFile]] = File(None), admin: dict = Depends(require_admin),
                   catalog: CatalogService = Depends(get_catalog)):
    paths = uploads.save_uploads(images, "images")
    return catalog.update_product(product_id, name=name, productCode=productCode, description=description,
                                  category=category, subCategory=subCategory, variations=variations,
                                  images=paths)


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, admin: dict = Depends(require_admin),
                   catalog: CatalogService = Depends(get_catalog)):
    catalog.delete_product(product_id)
    return {"message": "Product removed"}


# Variations
@app.post("/api/products/{product_id}/variations", status_code=201)
def add_variation(product_id: str, payload: VariationIn, admin: dict = Depends(require_admin),
                  catalog: CatalogService = Depends(get_catalog)):
    return catalog.add_product_variation(product_id, **payload.model_dump())


@app.put("/api/products/{product_id}/variations/{variation_id}")
def update_variation(product_id: str, variation_id: str, payload: VariationUpdate,
                     admin: dict = Depends(require_admin), catalog: CatalogService = Depends(get_catalog)):
    return catalog.update_product_variation(product_id, variation_id, payload.model_dump(exclude_unset=True))


@app.delete("/api/products/{product_id}/variations/{variation_id}")
def delete_variation(product_id: str, variation_id: str, admin: dict = Depends(require_admin),
                     catalog: CatalogService = Depends(get_catalog)):
    product = catalog.delete_product_variation(product_id, variation_id)
    return {"message": "Variation removed", "product": product}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 5000))
    uvicorn.run(app, host="0.0.0.0", port=port)
