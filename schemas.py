"""
Database Schemas for the Storefront

Each Pydantic model describes a document collection. Documents are stored with
camelCase field names (the models use snake_case attributes with camelCase aliases).

Collections:
- users: Account
- products: Product (embedded ProductVariant list)
- categories: Category
- blog_posts: BlogPost
- orders: Order (embedded OrderItem list)
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

RoleName = Literal["customer", "contributor", "affiliate", "admin"]
OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled"]
PaymentStatus = Literal["pending", "paid", "failed", "refunded"]
ExperienceLevel = Literal["beginner", "intermediate", "advanced"]
EmailFrequency = Literal["weekly", "monthly", "important-only"]

SLUG_PATTERN = r"^[a-z0-9-]+$"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------
# Accounts
# ---------------------------
class Location(CamelModel):
    city: str = ""
    country: str = ""


class EmailEngagement(CamelModel):
    last_opened: Optional[datetime] = None
    clicked_offers: bool = False
    opened_last3_emails: bool = False


class Account(CamelModel):
    """
    Collection: "users"
    Document id is the identity subject. Never hard-deleted.
    """
    email: EmailStr
    password_hash: Optional[str] = None
    first_name: str = ""
    last_name: str = ""
    display_name: str = ""
    photo_url: Optional[str] = Field(None, alias="photoURL")
    auth_provider: Literal["email", "google"] = "email"
    role: RoleName = "customer"
    permissions: List[str] = []

    # Marketing consents default to false
    email_opt_in: bool = False
    sms_opt_in: bool = False
    tracking_opt_in: bool = False
    email_frequency: EmailFrequency = "weekly"

    birthday: Optional[str] = None
    location: Location = Field(default_factory=Location)
    experience_level: Optional[ExperienceLevel] = None
    traditions: List[str] = []
    interests: List[str] = []
    favorite_product_types: List[str] = []
    blog_subscription: bool = False
    workshop_interest: bool = False

    tags: List[str] = []
    last_purchase: Optional[datetime] = None
    lifetime_value: float = Field(0, ge=0)
    cart_abandoned_count: int = Field(0, ge=0)
    email_engagement: EmailEngagement = Field(default_factory=EmailEngagement)

    profile_completion_step: int = Field(0, ge=0)

    last_login: Optional[datetime] = None
    terms_accepted_at: Optional[datetime] = None


# ---------------------------
# Catalog
# ---------------------------
class Category(CamelModel):
    """Collection: "categories" """
    name: str
    slug: str = Field(..., pattern=SLUG_PATTERN)
    description: str = ""
    icon: str = ""


class ProductVariant(CamelModel):
    id: str
    name: str
    price: Optional[float] = Field(None, ge=0, description="Overrides the product price when set")
    stock: int = Field(0, ge=0)


class Product(CamelModel):
    """
    Collection: "products"
    isActive=false is the soft-delete marker.
    """
    name: str
    slug: str = Field(..., pattern=SLUG_PATTERN)
    description: str = ""
    price: float = Field(..., ge=0)
    compare_at_price: Optional[float] = Field(None, ge=0)
    stock_quantity: int = Field(0, ge=0)
    category_id: Optional[str] = None
    image_url: Optional[str] = None
    images: List[str] = []
    is_featured: bool = False
    is_active: bool = True
    metadata: Dict[str, Any] = {}
    variants: List[ProductVariant] = []

    # Print-on-demand items fulfilled by the external vendor
    is_printful: bool = False
    printful_sync_product_id: Optional[int] = None
    printful_sync_variant_id: Optional[int] = None


# ---------------------------
# Blog
# ---------------------------
class BlogPost(CamelModel):
    """
    Collection: "blog_posts"
    publishedAt is set once, on the first unpublished -> published transition.
    """
    title: str
    slug: str = Field(..., pattern=SLUG_PATTERN)
    content: str
    excerpt: Optional[str] = None
    category: Optional[str] = None
    featured_image: Optional[str] = None
    author_id: Optional[str] = None
    read_time: int = Field(5, ge=1)
    is_published: bool = False
    published_at: Optional[datetime] = None
    tags: List[str] = []
    metadata: Dict[str, Any] = {}


# ---------------------------
# Orders
# ---------------------------
class Address(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    name: Optional[str] = None
    address1: str = Field(..., min_length=1)
    address2: Optional[str] = None
    city: str = Field(..., min_length=1)
    state: Optional[str] = None
    zip: str = Field(..., min_length=1)
    country: str = "US"
    phone: Optional[str] = None


class OrderItemRequest(CamelModel):
    product_id: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)
    variant_id: Optional[str] = None


class PlaceOrderRequest(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    items: List[OrderItemRequest] = Field(..., min_length=1)
    customer_email: EmailStr
    customer_name: str = Field(..., min_length=1)
    shipping_address: Address
    billing_address: Optional[Address] = None
    notes: Optional[str] = None
    payment_token: Optional[str] = None


class OrderItem(CamelModel):
    """Snapshot of a catalog item at purchase time."""
    product_id: str
    product_name: str
    product_price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    variant_id: Optional[str] = None
    variant_name: Optional[str] = None
    subtotal: float = Field(..., ge=0)


class Order(CamelModel):
    """
    Collection: "orders"
    Created atomically with the stock decrement of every line.
    """
    order_number: str
    user_id: Optional[str] = None
    customer_email: EmailStr
    customer_name: str
    shipping_address: Address
    billing_address: Address
    items: List[OrderItem]
    subtotal: float = Field(..., ge=0)
    tax: float = Field(..., ge=0)
    shipping: float = Field(..., ge=0)
    total: float = Field(..., ge=0)
    status: OrderStatus = "pending"
    payment_status: PaymentStatus = "pending"
    payment_token: Optional[str] = None
    notes: str = ""
    printful_order_id: Optional[Union[int, str]] = None
    printful_order_status: Optional[str] = None
