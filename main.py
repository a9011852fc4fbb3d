import os
import logging
from typing import Annotated, List, Optional, Dict, Any, Literal

from fastapi import Depends, FastAPI, File, Query, Request, Response, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import EmailStr, Field, StringConstraints
from pydantic import ValidationError as ModelValidationError

import config
import feeds
import identity
import payments
import printful
import uploads
from access import (
    Role,
    User,
    authorize_request,
    check_ownership_or_role,
    check_permission,
    get_current_user,
    get_optional_user,
    require_admin,
    require_permission,
)
from database import Store, create_document, get_db, get_documents, now_utc
from errors import ConflictError, Forbidden, NotFound, StorefrontError, Unauthorized, ValidationError
from orders import place_order, quote_items
from profiling import apply_tag_action, apply_tracking_event, preference_updates, preferences_view, profile_prompt
from reports import customer_stats, dashboard_stats, inventory_stats, sales_stats, top_products, user_stats
from schemas import (
    BlogPost,
    CamelModel,
    Category,
    EmailFrequency,
    ExperienceLevel,
    Location,
    OrderItemRequest,
    OrderStatus,
    PaymentStatus,
    PlaceOrderRequest,
    Product,
    RoleName,
)
from segments import compute_segments, export_segment_csv

logger = logging.getLogger("storefront")

app = FastAPI(title="Storefront API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount("/uploads", StaticFiles(directory=config.UPLOAD_DIR, check_dir=False), name="uploads")

# ---------------------- Error handlers ----------------------

@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    try:
        authorize_request(request, request.app.dependency_overrides.get(get_db, get_db)())
    except StorefrontError as auth_exc:
        return await storefront_error_handler(request, auth_exc)
    errors = [
        {"loc": list(err.get("loc", [])), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"error": "ValidationError", "message": "Invalid input", "errors": errors})

@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    message = "Internal server error" if config.IS_PRODUCTION else str(exc)
    return JSONResponse(status_code=500, content={"error": "ServerError", "message": message})

# ---------------------- Utilities ----------------------

PRODUCT_FIELDS = [
    "name", "slug", "description", "price", "compareAtPrice",
    "stockQuantity", "categoryId", "imageUrl", "images",
    "isActive", "isFeatured", "metadata", "variants",
]
BULK_PRODUCT_FIELDS = [f for f in PRODUCT_FIELDS if f != "slug"]
CATEGORY_FIELDS = ["name", "slug", "description", "icon"]
BLOG_FIELDS = [
    "title", "slug", "content", "excerpt", "category", "featuredImage",
    "readTime", "isPublished", "tags", "metadata",
]

def paginate(items: List[Dict[str, Any]], limit: int, offset: int):
    total = len(items)
    page = items[offset:offset + limit]
    return page, {"total": total, "limit": limit, "offset": offset, "hasMore": offset + limit < total}

def pick(body: Dict[str, Any], allowed: List[str]) -> Dict[str, Any]:
    return {k: v for k, v in body.items() if k in allowed}

def validated(model, doc: Dict[str, Any]):
    """Validate a merged document, reporting failures like request validation."""
    try:
        return model.model_validate(doc)
    except ModelValidationError as exc:
        errors = [{"loc": list(e["loc"]), "msg": e["msg"], "type": e["type"]} for e in exc.errors()]
        raise ValidationError("Invalid input", errors)

def without_secrets(user: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in user.items() if k != "passwordHash"}

def with_category(store: Store, product: Dict[str, Any]) -> Dict[str, Any]:
    if product.get("categoryId"):
        category = store.get("categories", product["categoryId"])
        if category:
            product["categoryName"] = category.get("name")
            product["categorySlug"] = category.get("slug")
    return product

def with_author(store: Store, post: Dict[str, Any]) -> Dict[str, Any]:
    if post.get("authorId"):
        author = store.get("users", post["authorId"])
        if author:
            first, _, last = (author.get("displayName") or "").partition(" ")
            post["authorFirstName"] = first
            post["authorLastName"] = last
    return post

def with_item_count(order: Dict[str, Any]) -> Dict[str, Any]:
    order["itemCount"] = len(order.get("items") or [])
    return order

TAG_ACTIONS_DONE = {"add": "added", "remove": "removed"}

def contains(value: Optional[str], needle: str) -> bool:
    return bool(value) and needle in value.lower()

# ---------------------- Models ----------------------

Name = Annotated[str, StringConstraints(strip_whitespace=True)]

class RegisterBody(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=8)
    first_name: Name = ""
    last_name: Name = ""
    email_opt_in: bool = False
    sms_opt_in: bool = False
    terms_accepted: bool

class LoginBody(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=1)

class GoogleSignInBody(CamelModel):
    id_token: str = Field(..., min_length=1)
    email_opt_in: bool = False
    sms_opt_in: bool = False
    terms_accepted: bool = False

class PreferencesBody(CamelModel):
    email_opt_in: Optional[bool] = None
    sms_opt_in: Optional[bool] = None
    tracking_opt_in: Optional[bool] = None
    email_frequency: Optional[EmailFrequency] = None
    birthday: Optional[str] = None
    location: Optional[Location] = None
    experience_level: Optional[ExperienceLevel] = None
    traditions: Optional[List[str]] = None
    interests: Optional[List[str]] = None
    favorite_product_types: Optional[List[str]] = None
    blog_subscription: Optional[bool] = None
    workshop_interest: Optional[bool] = None

class TagsBody(CamelModel):
    tags: List[str]
    action: Literal["add", "remove"]

class TrackBody(CamelModel):
    event: str = Field(..., min_length=1)
    data: Dict[str, Any] = {}

class RoleBody(CamelModel):
    role: RoleName

class BulkDeleteBody(CamelModel):
    product_ids: List[str] = Field(..., min_length=1)

class BulkUpdateBody(CamelModel):
    product_ids: List[str] = Field(..., min_length=1)
    updates: Dict[str, Any]

class OrderStatusBody(CamelModel):
    status: OrderStatus
    payment_status: Optional[PaymentStatus] = None

class QuoteBody(CamelModel):
    items: List[OrderItemRequest] = Field(..., min_length=1)

class SubmitOrderBody(CamelModel):
    order_id: str = Field(..., min_length=1)

class CheckoutItem(CamelModel):
    name: str = Field(..., min_length=1)
    price: float = Field(..., gt=0)
    quantity: int = Field(..., ge=1)

class CheckoutBody(CamelModel):
    cart: List[CheckoutItem] = Field(..., min_length=1)
    customer_email: EmailStr
    customer_name: Optional[str] = None

class DeleteImageBody(CamelModel):
    url: str = Field(..., min_length=1)

# ---------------------- Root & Health ----------------------

@app.get("/")
def read_root():
    return {"message": "Storefront API running"}

@app.get("/test")
def test_database(store: Store = Depends(get_db)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_backend": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    if store is not None:
        response["database"] = "✅ Available"
        response["database_backend"] = store.backend
        response["database_name"] = store.name
        response["connection_status"] = "Connected"
        try:
            response["collections"] = store.list_collections()
            response["database"] = "✅ Connected & Working"
        except Exception as e:
            logger.warning("Database check failed: %s", e)
            response["database"] = f"⚠️ Connected but Error: {str(e)[:80]}"
    return response

# ---------------------- Schemas Endpoint ----------------------

@app.get("/schema")
def get_schema():
    import schemas as s
    def model_fields(m):
        return {(v.alias or k): str(v.annotation) for k, v in getattr(m, "model_fields", {}).items()}
    return {
        "models": {
            "user": model_fields(s.Account),
            "category": model_fields(s.Category),
            "product": model_fields(s.Product),
            "blog_post": model_fields(s.BlogPost),
            "order": model_fields(s.Order),
        }
    }

# ---------------------- Auth ----------------------

@app.post("/auth/register", status_code=201)
def register(body: RegisterBody, store: Store = Depends(get_db)):
    if not body.terms_accepted:
        raise ValidationError("You must accept the Terms & Privacy Policy")
    email = str(body.email).lower()
    if store.find_one("users", {"email": email}):
        raise ConflictError("User with this email already exists")
    account = identity.new_account(
        email, body.first_name, body.last_name,
        password_hash=identity.hash_password(body.password),
        email_opt_in=body.email_opt_in, sms_opt_in=body.sms_opt_in, terms_accepted=True,
    )
    user_id = store.insert("users", account)
    user = {"id": user_id, **account}
    logger.info("Registered user %s", user_id)
    return {
        "message": "User registered successfully",
        "token": identity.issue_token(user_id, email, user["role"]),
        "user": identity.public_user(user),
    }

@app.post("/auth/login")
def login(body: LoginBody, store: Store = Depends(get_db)):
    user = store.find_one("users", {"email": str(body.email).lower()})
    if not user or not identity.check_password(body.password, user.get("passwordHash")):
        raise Unauthorized("Invalid credentials")
    store.update("users", user["id"], {"lastLogin": now_utc()})
    return {
        "message": "Login successful",
        "token": identity.issue_token(user["id"], user["email"], user.get("role", "customer")),
        "user": identity.public_user(user),
    }

@app.post("/auth/google")
def google_sign_in(body: GoogleSignInBody, response: Response, store: Store = Depends(get_db)):
    profile = identity.verify_google_token(body.id_token)
    uid = profile["uid"]
    user = store.get("users", uid)
    is_new_user = user is None
    if is_new_user:
        first, _, last = profile["name"].partition(" ")
        account = identity.new_account(
            profile["email"].lower() if profile["email"] else None, first, last,
            auth_provider="google", photo_url=profile["picture"],
            email_opt_in=body.email_opt_in, sms_opt_in=body.sms_opt_in, terms_accepted=body.terms_accepted,
        )
        account["displayName"] = profile["name"]
        store.insert("users", account, doc_id=uid)
        user = {"id": uid, **account}
        response.status_code = 201
    else:
        store.update("users", uid, {"lastLogin": now_utc(), "updatedAt": now_utc()})
    return {
        "message": "User registered successfully" if is_new_user else "Login successful",
        "token": identity.issue_token(uid, user.get("email"), user.get("role", "customer")),
        "isNewUser": is_new_user,
        "user": identity.public_user(user),
    }

@app.get("/auth/me")
def me(user: User = Depends(get_current_user)):
    return {"user": without_secrets(user)}

# ---------------------- Users (self) ----------------------

@app.get("/users/me/preferences")
def get_preferences(user: User = Depends(get_current_user)):
    return {"preferences": preferences_view(user)}

@app.put("/users/me/preferences")
def update_preferences(body: PreferencesBody, user: User = Depends(get_current_user), store: Store = Depends(get_db)):
    updates = preference_updates(user, body.model_dump(by_alias=True, exclude_unset=True))
    store.update("users", user["id"], updates)
    return {
        "message": "Preferences updated successfully",
        "preferences": updates,
        "profileCompletionStep": updates["profileCompletionStep"],
    }

@app.get("/users/me/profile-prompt")
def get_profile_prompt(user: User = Depends(get_current_user)):
    return profile_prompt(user.get("profileCompletionStep"))

@app.post("/users/me/tags")
def manage_my_tags(body: TagsBody, user: User = Depends(get_current_user), store: Store = Depends(get_db)):
    tags = apply_tag_action(user.get("tags") or [], body.tags, body.action)
    store.update("users", user["id"], {"tags": tags, "updatedAt": now_utc()})
    return {"message": f"Tags {TAG_ACTIONS_DONE[body.action]} successfully", "tags": tags}

@app.post("/users/me/track")
def track_event(body: TrackBody, user: User = Depends(get_current_user), store: Store = Depends(get_db)):
    if not user.get("trackingOptIn"):
        raise Forbidden("Tracking not enabled for this user")
    updates = apply_tracking_event(user, body.event, body.data)
    if updates:
        store.update("users", user["id"], updates)
    return {"message": "Event tracked successfully"}

# ---------------------- Products ----------------------

@app.get("/products")
def list_products(category: Optional[str] = None, featured: Optional[bool] = None, search: Optional[str] = None,
                  sort: str = "createdAt", order: str = "desc",
                  limit: int = Query(20, ge=1), offset: int = Query(0, ge=0),
                  store: Store = Depends(get_db)):
    filt: Dict[str, Any] = {"isActive": True}
    if category:
        cat = store.find_one("categories", {"slug": category})
        if cat:
            filt["categoryId"] = cat["id"]
    if featured:
        filt["isFeatured"] = True
    sort_field = sort if sort in ("createdAt", "name", "price", "stockQuantity") else "createdAt"
    direction = 1 if order.lower() == "asc" else -1
    products = store.find("products", filt, sort=[(sort_field, direction)])
    if search:
        needle = search.lower()
        products = [p for p in products if contains(p.get("name"), needle) or contains(p.get("description"), needle)]
    page, pagination = paginate(products, limit, offset)
    return {"products": [with_category(store, p) for p in page], "pagination": pagination}

@app.get("/products/{slug}")
def get_product(slug: str, store: Store = Depends(get_db)):
    product = store.find_one("products", {"slug": slug, "isActive": True})
    if not product:
        raise NotFound("Product not found")
    return {"product": with_category(store, product)}

@app.post("/products", status_code=201)
def create_product(body: Product, admin: User = Depends(require_admin), store: Store = Depends(get_db)):
    if store.find_one("products", {"slug": body.slug}):
        raise ConflictError("Product with this slug already exists")
    doc = body.model_dump(by_alias=True)
    doc["isActive"] = True
    product_id = create_document(store, "products", doc)
    logger.info("Product %s created by %s", body.slug, admin["id"])
    return {"message": "Product created successfully", "product": store.get("products", product_id)}

@app.put("/products/{product_id}")
def update_product(product_id: str, body: Dict[str, Any], admin: User = Depends(require_admin),
                   store: Store = Depends(get_db)):
    existing = store.get("products", product_id)
    if not existing:
        raise NotFound("Product not found")
    updates = pick(body, PRODUCT_FIELDS)
    if not updates:
        raise ValidationError("No valid fields to update")
    validated(Product, {**existing, **updates})
    if "slug" in updates and updates["slug"] != existing.get("slug"):
        if store.find_one("products", {"slug": updates["slug"]}):
            raise ConflictError("Product with this slug already exists")
    updates["updatedAt"] = now_utc()
    store.update("products", product_id, updates)
    return {"message": "Product updated successfully", "product": store.get("products", product_id)}

@app.delete("/products/{product_id}")
def delete_product(product_id: str, admin: User = Depends(require_admin), store: Store = Depends(get_db)):
    if not store.update("products", product_id, {"isActive": False, "updatedAt": now_utc()}):
        raise NotFound("Product not found")
    return {"message": "Product deleted successfully"}

@app.post("/products/bulk/delete")
def bulk_delete_products(body: BulkDeleteBody, admin: User = Depends(require_admin), store: Store = Depends(get_db)):
    count = store.batch_update("products", body.product_ids, {"isActive": False, "updatedAt": now_utc()})
    return {"message": f"{count} products deleted successfully"}

@app.post("/products/bulk/update")
def bulk_update_products(body: BulkUpdateBody, admin: User = Depends(require_admin), store: Store = Depends(get_db)):
    updates = pick(body.updates, BULK_PRODUCT_FIELDS)
    if not updates:
        raise ValidationError("updates must contain at least one product field")
    stock = updates.get("stockQuantity")
    if isinstance(stock, (int, float)) and stock < 0:
        # stock is only re-validated by order placement
        logger.warning("Bulk update by %s writes negative stockQuantity=%s to %d product(s)",
                       admin["id"], stock, len(body.product_ids))
    updates["updatedAt"] = now_utc()
    count = store.batch_update("products", body.product_ids, updates)
    return {"message": f"{count} products updated successfully"}

# ---------------------- Categories ----------------------

@app.get("/categories")
def list_categories(store: Store = Depends(get_db)):
    return {"categories": get_documents(store, "categories", sort=[("name", 1)])}

@app.get("/categories/{slug}")
def get_category(slug: str, store: Store = Depends(get_db)):
    category = store.find_one("categories", {"slug": slug})
    if not category:
        raise NotFound("Category not found")
    return {"category": category}

@app.post("/categories", status_code=201)
def create_category(body: Category, admin: User = Depends(require_admin), store: Store = Depends(get_db)):
    if store.find_one("categories", {"slug": body.slug}):
        raise ConflictError("Category with this slug already exists")
    category_id = create_document(store, "categories", body)
    return {"message": "Category created successfully", "category": store.get("categories", category_id)}

@app.put("/categories/{category_id}")
def update_category(category_id: str, body: Dict[str, Any], admin: User = Depends(require_admin),
                    store: Store = Depends(get_db)):
    existing = store.get("categories", category_id)
    if not existing:
        raise NotFound("Category not found")
    updates = pick(body, CATEGORY_FIELDS)
    if not updates:
        raise ValidationError("No fields to update")
    validated(Category, {**existing, **updates})
    updates["updatedAt"] = now_utc()
    store.update("categories", category_id, updates)
    return {"message": "Category updated successfully", "category": store.get("categories", category_id)}

@app.delete("/categories/{category_id}")
def delete_category(category_id: str, admin: User = Depends(require_admin), store: Store = Depends(get_db)):
    if not store.delete("categories", category_id):
        raise NotFound("Category not found")
    return {"message": "Category deleted successfully"}

# ---------------------- Blog ----------------------

@app.get("/blog")
def list_posts(category: Optional[str] = None, search: Optional[str] = None,
               limit: int = Query(10, ge=1), offset: int = Query(0, ge=0), store: Store = Depends(get_db)):
    filt: Dict[str, Any] = {"isPublished": True}
    if category:
        filt["category"] = category
    posts = store.find("blog_posts", filt, sort=[("publishedAt", -1)])
    if search:
        needle = search.lower()
        posts = [p for p in posts if contains(p.get("title"), needle) or contains(p.get("content"), needle)]
    page, pagination = paginate(posts, limit, offset)
    return {"posts": [with_author(store, p) for p in page], "pagination": pagination}

@app.get("/blog/admin/all")
def list_all_posts(limit: int = Query(50, ge=1), offset: int = Query(0, ge=0),
                   admin: User = Depends(require_admin), store: Store = Depends(get_db)):
    posts = store.find("blog_posts", sort=[("createdAt", -1)])
    page, pagination = paginate(posts, limit, offset)
    return {"posts": [with_author(store, p) for p in page], "pagination": pagination}

@app.get("/blog/{slug}")
def get_post(slug: str, store: Store = Depends(get_db)):
    post = store.find_one("blog_posts", {"slug": slug, "isPublished": True})
    if not post:
        raise NotFound("Blog post not found")
    return {"post": with_author(store, post)}

@app.post("/blog", status_code=201)
def create_post(body: BlogPost, user: User = Depends(require_permission("create:blog")),
                store: Store = Depends(get_db)):
    if body.is_published:
        check_permission(user, "publish:blog")
    if store.find_one("blog_posts", {"slug": body.slug}):
        raise ConflictError("Blog post with this slug already exists")
    now = now_utc()
    doc = body.model_dump(by_alias=True)
    doc.update({
        "authorId": user["id"],
        "publishedAt": now if body.is_published else None,
        "createdAt": now,
        "updatedAt": now,
    })
    post_id = store.insert("blog_posts", doc)
    return {"message": "Blog post created successfully", "post": {"id": post_id, **doc}}

@app.put("/blog/{post_id}")
def update_post(post_id: str, body: Dict[str, Any], user: User = Depends(require_permission("edit:blog")),
                store: Store = Depends(get_db)):
    existing = store.get("blog_posts", post_id)
    if not existing:
        raise NotFound("Blog post not found")
    updates = pick(body, BLOG_FIELDS)
    if not updates:
        raise ValidationError("No valid fields to update")
    validated(BlogPost, {**existing, **updates})
    if "isPublished" in updates and bool(updates["isPublished"]) != bool(existing.get("isPublished")):
        check_permission(user, "publish:blog")
    if updates.get("isPublished") and not existing.get("isPublished") and not existing.get("publishedAt"):
        updates["publishedAt"] = now_utc()
    updates["updatedAt"] = now_utc()
    store.update("blog_posts", post_id, updates)
    return {"message": "Blog post updated successfully", "post": store.get("blog_posts", post_id)}

@app.delete("/blog/{post_id}")
def delete_post(post_id: str, user: User = Depends(require_permission("delete:blog")),
                store: Store = Depends(get_db)):
    if not store.delete("blog_posts", post_id):
        raise NotFound("Blog post not found")
    return {"message": "Blog post deleted successfully"}

# ---------------------- Orders ----------------------

@app.post("/orders", status_code=201)
def create_order(body: PlaceOrderRequest, user: Optional[User] = Depends(get_optional_user),
                 store: Store = Depends(get_db)):
    order = place_order(store, body, user["id"] if user else None)
    return {"message": "Order created successfully", "order": order}

@app.get("/orders/my-orders")
def my_orders(user: User = Depends(get_current_user), store: Store = Depends(get_db)):
    orders = store.find("orders", {"userId": user["id"]}, sort=[("createdAt", -1)])
    return {"orders": [with_item_count(o) for o in orders]}

@app.get("/orders/admin/all")
def all_orders(status: Optional[OrderStatus] = None, limit: int = Query(50, ge=1), offset: int = Query(0, ge=0),
               admin: User = Depends(require_admin), store: Store = Depends(get_db)):
    filt = {"status": status} if status else None
    orders = store.find("orders", filt, sort=[("createdAt", -1)], limit=limit, offset=offset)
    total = store.count("orders", filt)
    return {
        "orders": [with_item_count(o) for o in orders],
        "pagination": {"total": total, "limit": limit, "offset": offset, "hasMore": offset + limit < total},
    }

@app.get("/orders/{order_number}")
def get_order(order_number: str, user: User = Depends(get_current_user), store: Store = Depends(get_db)):
    order = store.find_one("orders", {"orderNumber": order_number})
    if not order:
        raise NotFound("Order not found")
    check_ownership_or_role(user, Role.ADMIN, order.get("userId"))
    return {"order": order}

@app.patch("/orders/{order_id}/status")
def update_order_status(order_id: str, body: OrderStatusBody, admin: User = Depends(require_admin),
                        store: Store = Depends(get_db)):
    updates: Dict[str, Any] = {"status": body.status, "updatedAt": now_utc()}
    if body.payment_status:
        updates["paymentStatus"] = body.payment_status
    if not store.update("orders", order_id, updates):
        raise NotFound("Order not found")
    logger.info("Order %s status set to %s by %s", order_id, body.status, admin["id"])
    return {"message": "Order status updated successfully", "order": store.get("orders", order_id)}

# ---------------------- Cart ----------------------

@app.post("/cart/quote")
def quote_cart(body: QuoteBody, store: Store = Depends(get_db)):
    return {"quote": quote_items(store, body.items)}

# ---------------------- Fulfillment ----------------------

@app.post("/printful/sync-products")
def sync_printful_products(admin: User = Depends(require_admin), store: Store = Depends(get_db),
                           client=Depends(printful.get_printful)):
    return printful.sync_products(store, client)

@app.post("/printful/submit-order")
def submit_printful_order(body: SubmitOrderBody, user: User = Depends(require_permission("manage:orders")),
                          store: Store = Depends(get_db), client=Depends(printful.get_printful)):
    return printful.submit_order(store, client, body.order_id)

@app.get("/printful/order-status/{order_id}")
def printful_order_status(order_id: str, user: User = Depends(require_permission("manage:orders")),
                          store: Store = Depends(get_db), client=Depends(printful.get_printful)):
    return printful.refresh_order_status(store, client, order_id)

# ---------------------- Checkout & Feeds ----------------------

@app.post("/checkout")
def create_checkout(body: CheckoutBody):
    cart = [item.model_dump() for item in body.cart]
    return payments.create_payment_link(cart, str(body.customer_email), body.customer_name)

@app.get("/youtube-feed")
def youtube_feed(channel_id: str = ""):
    return feeds.fetch_channel_videos(channel_id)

# ---------------------- Uploads ----------------------

def read_upload(upload: UploadFile) -> bytes:
    data = upload.file.read(config.MAX_FILE_SIZE + 1)
    if len(data) > config.MAX_FILE_SIZE:
        raise ValidationError(f"File too large, limit is {config.MAX_FILE_SIZE} bytes")
    return data

@app.post("/upload/image")
def upload_image(image: UploadFile = File(...), type: Optional[str] = None, optimize: bool = True,
                 width: Optional[int] = Query(None, ge=1), height: Optional[int] = Query(None, ge=1),
                 admin: User = Depends(require_admin)):
    saved = uploads.save_image(read_upload(image), image.filename, image.content_type, type,
                               optimize=optimize, width=width, height=height)
    return {"message": "Image uploaded successfully", "image": saved}

@app.post("/upload/images")
def upload_images(images: List[UploadFile] = File(...), type: Optional[str] = None,
                  admin: User = Depends(require_admin)):
    if len(images) > uploads.MAX_FILES:
        raise ValidationError(f"At most {uploads.MAX_FILES} images per upload")
    payloads = [(read_upload(f), f) for f in images]
    for data, f in payloads:
        uploads.check_image(f.filename, f.content_type, len(data))
    saved = [uploads.save_image(data, f.filename, f.content_type, type, optimize=False) for data, f in payloads]
    return {"message": "Images uploaded successfully", "images": saved}

@app.delete("/upload/image")
def delete_image(body: DeleteImageBody, admin: User = Depends(require_admin)):
    uploads.delete_image(body.url)
    return {"message": "Image deleted successfully"}

@app.get("/upload/images")
def list_images(type: Optional[str] = None, admin: User = Depends(require_admin)):
    return {"images": uploads.list_images(type)}

# ---------------------- Admin ----------------------

@app.get("/admin/users")
def admin_list_users(role: Optional[RoleName] = None, tag: Optional[str] = None, emailOptIn: Optional[bool] = None,
                     search: Optional[str] = None, limit: int = Query(50, ge=1, le=100),
                     offset: int = Query(0, ge=0),
                     admin: User = Depends(require_permission("view:users")), store: Store = Depends(get_db)):
    filt: Dict[str, Any] = {}
    if role:
        filt["role"] = role
    if tag:
        filt["tags"] = tag
    if emailOptIn is not None:
        filt["emailOptIn"] = emailOptIn
    users = store.find("users", filt, sort=[("createdAt", -1)])
    if search:
        needle = search.lower()
        users = [u for u in users if any(contains(u.get(f), needle)
                                         for f in ("email", "displayName", "firstName", "lastName"))]
    summaries = [
        {
            "id": u["id"],
            "email": u.get("email"),
            "firstName": u.get("firstName"),
            "lastName": u.get("lastName"),
            "displayName": u.get("displayName"),
            "role": u.get("role", "customer"),
            "tags": u.get("tags") or [],
            "lifetimeValue": u.get("lifetimeValue") or 0,
            "lastLogin": u.get("lastLogin"),
            "emailOptIn": u.get("emailOptIn"),
            "smsOptIn": u.get("smsOptIn"),
            "createdAt": u.get("createdAt"),
        }
        for u in users
    ]
    page, pagination = paginate(summaries, limit, offset)
    return {"users": page, "pagination": pagination}

@app.get("/admin/users/{user_id}")
def admin_get_user(user_id: str, admin: User = Depends(require_permission("view:users")),
                   store: Store = Depends(get_db)):
    user = store.get("users", user_id)
    if not user:
        raise NotFound("User not found")
    return {"user": without_secrets(user)}

@app.put("/admin/users/{user_id}/role")
def admin_update_role(user_id: str, body: RoleBody, admin: User = Depends(require_permission("manage:roles")),
                      store: Store = Depends(get_db)):
    if user_id == admin["id"]:
        raise Forbidden("You cannot change your own role")
    if not store.update("users", user_id, {"role": body.role, "updatedAt": now_utc()}):
        raise NotFound("User not found")
    logger.info("User %s role set to %s by %s", user_id, body.role, admin["id"])
    return {"message": "User role updated successfully", "userId": user_id, "newRole": body.role}

@app.post("/admin/users/{user_id}/tags")
def admin_manage_tags(user_id: str, body: TagsBody, admin: User = Depends(require_permission("edit:users")),
                      store: Store = Depends(get_db)):
    user = store.get("users", user_id)
    if not user:
        raise NotFound("User not found")
    tags = apply_tag_action(user.get("tags") or [], body.tags, body.action)
    store.update("users", user_id, {"tags": tags, "updatedAt": now_utc()})
    return {"message": f"Tags {TAG_ACTIONS_DONE[body.action]} successfully", "userId": user_id, "tags": tags}

@app.get("/admin/segments")
def admin_segments(admin: User = Depends(require_permission("view:segments")), store: Store = Depends(get_db)):
    return compute_segments(store.find("users"))

@app.get("/admin/segments/{segment_key}/export")
def admin_export_segment(segment_key: str, admin: User = Depends(require_permission("export:segments")),
                         store: Store = Depends(get_db)):
    content = export_segment_csv(store, segment_key)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{segment_key}_emails.csv"'},
    )

@app.get("/admin/stats")
def admin_stats(admin: User = Depends(require_admin), store: Store = Depends(get_db)):
    return {"stats": user_stats(store.find("users"))}

# ---------------------- Reports ----------------------

@app.get("/stats/dashboard")
def stats_dashboard(admin: User = Depends(require_admin), store: Store = Depends(get_db)):
    return dashboard_stats(store)

@app.get("/stats/sales")
def stats_sales(period: Literal["7d", "30d", "90d", "1y"] = "30d", admin: User = Depends(require_admin),
                store: Store = Depends(get_db)):
    return sales_stats(store, period)

@app.get("/stats/top-products")
def stats_top_products(limit: int = Query(10, ge=1, le=100), admin: User = Depends(require_admin),
                       store: Store = Depends(get_db)):
    return top_products(store, limit)

@app.get("/stats/customers")
def stats_customers(admin: User = Depends(require_admin), store: Store = Depends(get_db)):
    return customer_stats(store)

@app.get("/stats/inventory")
def stats_inventory(admin: User = Depends(require_admin), store: Store = Depends(get_db)):
    return inventory_stats(store)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
