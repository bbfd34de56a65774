"""
Database Schemas for the e-commerce admin backend

Each Pydantic model represents a collection in MongoDB. The collection name is the lowercase of the class name.
Routers validate the document they are about to write against these models; a failure is reported as a 400
with one message per offending field.
"""
import re
from datetime import datetime
from typing import Annotated, Any, Dict, List, Optional, Literal

from bson import ObjectId
from pydantic import AfterValidator, BaseModel, ConfigDict, Field, EmailStr, field_validator


def _object_id(value):
    if not ObjectId.is_valid(value):
        raise ValueError("Invalid ObjectId")
    return value


ObjectIdRef = Annotated[Any, AfterValidator(_object_id)]

PHONE_RE = re.compile(r"^[+]?[0-9\s\-\(\)]+$")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class Document(BaseModel):
    model_config = ConfigDict(extra="allow", arbitrary_types_allowed=True)


# ---------------------- Catalog ----------------------

class Dimensions(BaseModel):
    length: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None


class Product(Document):
    name: str = Field(..., min_length=1, description="Product name")
    slug: str = Field(..., min_length=1, description="URL slug derived from the name")
    description: str = Field("", description="Full description")
    short_description: str = Field("", description="Short description")
    sku: Optional[str] = Field(None, description="Stock keeping unit")
    brand_id: Optional[str] = Field(None, description="Brand identifier")
    categories: List[str] = Field(default_factory=list, description="Category names")
    tags: List[str] = Field(default_factory=list)
    price: float = Field(..., ge=0, description="Regular price")
    sale_price: Optional[float] = Field(None, ge=0, description="Sale price")
    currency: str = Field("USD", description="Currency code")
    quantity_in_stock: int = Field(0, ge=0, description="Available quantity")
    stock_status: Literal['in_stock', 'out_of_stock', 'preorder'] = 'in_stock'
    weight: Optional[float] = Field(None, ge=0)
    dimensions: Optional[Dimensions] = None
    shipping_class: Optional[str] = None
    images: List[str] = Field(default_factory=list, description="Image URLs")
    videos: List[Any] = Field(default_factory=list)
    attributes: List[Any] = Field(default_factory=list)
    variants: List[Any] = Field(default_factory=list)
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    meta_keywords: List[str] = Field(default_factory=list)
    rating_average: float = Field(0, ge=0, le=5)
    rating_count: int = Field(0, ge=0)
    reviews: List[Any] = Field(default_factory=list)
    featured: bool = False
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Category(Document):
    name: str = Field(..., min_length=1, description="Category name")
    slug: str = Field(..., min_length=1, description="Unique slug for category")
    description: str = Field("", description="Category description")
    image: Optional[str] = None
    icon: Optional[str] = None
    color: str = Field("#6B7280", description="Display color")
    sort_order: int = 0
    is_active: bool = Field(True, description="Whether the category is visible")
    is_featured: bool = False
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    meta_keywords: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Subcategory(Category):
    parent_id: ObjectIdRef = Field(..., description="Parent category id")


# ---------------------- Orders ----------------------

class OrderItem(BaseModel):
    product: ObjectIdRef
    productName: str = Field(..., min_length=1)
    price: float = Field(..., gt=0)
    quantity: int = Field(..., gt=0)
    image: Optional[str] = None


class Customer(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    phone: str = Field(..., min_length=1)


class ShippingAddress(BaseModel):
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zipCode: str = Field(..., min_length=1)
    country: Optional[str] = None


class Tracking(BaseModel):
    trackingNumber: Optional[str] = None
    carrier: Optional[str] = None
    estimatedDelivery: Optional[Any] = None


class Order(Document):
    customer: Customer
    shippingAddress: ShippingAddress
    items: List[OrderItem] = Field(..., min_length=1)
    totalAmount: float = Field(..., gt=0)
    status: Literal['Pending', 'Dispatched', 'Delivered', 'Cancelled'] = 'Pending'
    tracking: Optional[Tracking] = None
    cancellationReason: Optional[str] = None
    dispatchedAt: Optional[datetime] = None
    deliveredAt: Optional[datetime] = None
    cancelledAt: Optional[datetime] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


# ---------------------- Riders ----------------------

class GeoPoint(BaseModel):
    type: Literal['Point'] = 'Point'
    coordinates: List[float] = Field(..., min_length=2, max_length=2, description="[longitude, latitude]")


class Rider(Document):
    fullName: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    email: Optional[str] = None
    address: str = Field(..., min_length=1)
    vehicleType: Literal['bike', 'car', 'van'] = 'bike'
    licenseNumber: str = ""
    image: str = ""
    cnicFrontImage: str = ""
    cnicBackImage: str = ""
    bikeDocument: str = ""
    location: Optional[GeoPoint] = None
    isAvailable: bool = True
    assignedOrders: List[ObjectIdRef] = Field(default_factory=list)
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


# ---------------------- CMS ----------------------

class BannerImage(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    url: str
    alt: str = ""
    title: str = ""
    order: int = 0


class Banner(BaseModel):
    images: List[BannerImage] = Field(default_factory=list, max_length=5)
    headline: str = Field("", max_length=100)
    subheadline: str = Field("", max_length=200)
    ctaText: str = Field("", max_length=50)
    ctaLink: str = ""


class BrandColors(BaseModel):
    primary: str = "#7c3aed"
    secondary: str = "#6366f1"
    accent: str = "#f59e0b"


class Logo(BaseModel):
    model_config = ConfigDict(extra="allow")

    logoUrl: str = ""
    logoAlt: str = Field("Company Logo", max_length=100)
    faviconUrl: str = ""
    brandColors: BrandColors = Field(default_factory=BrandColors)


class CompanyValue(BaseModel):
    id: str
    title: Optional[str] = Field(None, max_length=50)
    description: Optional[str] = Field(None, max_length=200)


class TextContent(BaseModel):
    companyName: str = Field("Your Company Name", max_length=100)
    tagline: str = Field("", max_length=150)
    aboutUs: str = Field("", max_length=1000)
    mission: str = Field("", max_length=500)
    vision: str = Field("", max_length=500)
    values: List[CompanyValue] = Field(default_factory=list, max_length=6)


class MenuItem(BaseModel):
    id: str
    label: str = Field(..., max_length=50)
    url: str
    order: int = 0
    isExternal: bool = False
    openInNewTab: bool = False
    children: List[Any] = Field(default_factory=list)


class FooterMenuItem(BaseModel):
    id: str
    label: str = Field(..., max_length=50)
    url: str
    order: int = 0
    isExternal: bool = False


class Menus(BaseModel):
    headerMenu: List[MenuItem] = Field(default_factory=list, max_length=10)
    footerMenu: List[FooterMenuItem] = Field(default_factory=list, max_length=15)


class ContactInfo(BaseModel):
    address: str = Field("", max_length=300)
    phone: str = ""
    email: str = ""
    workingHours: str = Field("", max_length=100)

    @field_validator("phone")
    @classmethod
    def check_phone(cls, v):
        if v and not PHONE_RE.match(v):
            raise ValueError("Invalid phone number format")
        return v

    @field_validator("email")
    @classmethod
    def check_email(cls, v):
        if v and not EMAIL_RE.match(v):
            raise ValueError("Invalid email format")
        return v


class SocialLinks(BaseModel):
    facebook: str = ""
    twitter: str = ""
    instagram: str = ""
    linkedin: str = ""
    youtube: str = ""
    tiktok: str = ""


class Newsletter(BaseModel):
    enabled: bool = True
    title: str = Field("", max_length=100)
    description: str = Field("", max_length=200)


class Footer(BaseModel):
    copyright: str = Field("", max_length=200)
    contactInfo: ContactInfo = Field(default_factory=ContactInfo)
    socialLinks: SocialLinks = Field(default_factory=SocialLinks)
    newsletter: Newsletter = Field(default_factory=Newsletter)


class Cms(Document):
    theme_name: str = "theme2"
    banner: Banner = Field(default_factory=Banner)
    logo: Logo = Field(default_factory=Logo)
    textContent: TextContent = Field(default_factory=TextContent)
    menus: Menus = Field(default_factory=Menus)
    footer: Footer = Field(default_factory=Footer)
    isActive: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ---------------------- Pages ----------------------

class PageContent(Document):
    pageName: str = Field(..., min_length=1)
    slug: str = Field(..., min_length=1)
    featuredImage: Optional[str] = None
    pageTitle: str = Field(..., min_length=1)
    pageDescription: str = ""
    status: Literal['draft', 'published', 'archived'] = 'draft'
    pageContent: Dict[str, Any] = Field(default_factory=dict)
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


class ContactPage(PageContent):
    showForm: bool = True


# ---------------------- Admin ----------------------

class Admin(Document):
    username: str = Field(..., min_length=3)
    email: EmailStr
    password: str = Field(..., description="bcrypt hash")
    role: str = Field("admin", min_length=1)
    permissions: List[str] = Field(default_factory=list)
    lastLogin: Optional[datetime] = None
    createdAt: Optional[datetime] = None


class PasswordReset(Document):
    email: EmailStr
    code: str
    token: Optional[str] = None
    isVerified: bool = False
    attempts: int = Field(0, ge=0, le=5)
    expiresAt: datetime
    createdAt: Optional[datetime] = None


COLLECTION_MODELS = {
    "product": Product,
    "category": Category,
    "subcategory": Subcategory,
    "order": Order,
    "rider": Rider,
    "cms": Cms,
    "pagecontent": PageContent,
    "contactpage": ContactPage,
    "admin": Admin,
    "passwordreset": PasswordReset,
}


def validate_document(model, doc: dict) -> dict:
    """Validate a document about to be written; raises pydantic.ValidationError."""
    model.model_validate({k: v for k, v in doc.items() if k != "_id"})
    return doc


def validate_update(model, existing: dict, update: dict) -> dict:
    """Validate the document an update would produce, without writing it."""
    validate_document(model, {**existing, **update})
    return update
