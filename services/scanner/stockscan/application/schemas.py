from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional


class ScanEvent(BaseModel):
    """Payload posted by the scanning device."""
    barcode: str = Field(min_length=1, max_length=100)
    device_id: str = Field(min_length=1, max_length=100)
    # Device clock, free-form (firmware sends uptime millis or an ISO string)
    timestamp: Optional[str] = None


class ScannedProduct(BaseModel):
    name: str
    sku: str
    old_quantity: int
    new_quantity: int
    category: Optional[str] = None


class ScanAccepted(BaseModel):
    success: bool = True
    message: str
    product: ScannedProduct


class ScanRejected(BaseModel):
    success: bool = False
    message: str
    barcode: Optional[str] = None


class WebhookStatus(BaseModel):
    message: str
    timestamp: str


class MovementProduct(BaseModel):
    name: str
    sku: Optional[str] = None
    category: Optional[str] = None
    quantity: int
    class Config:
        from_attributes = True


class MovementRead(BaseModel):
    id: int
    product_id: int
    movement_type: str
    quantity: int
    notes: Optional[str] = None
    device_id: Optional[str] = None
    created_at: datetime
    product: Optional[MovementProduct] = None
    class Config:
        from_attributes = True
