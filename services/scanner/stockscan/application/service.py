from typing import Optional
from sqlalchemy import case, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload
from shared.core import get_logger, set_request_context
from stockscan.domain.models import Product, InventoryMovement, MOVEMENT_OUT
from .errors import ProductNotFound, AuditWriteFailure, StockWriteFailure
from .schemas import ScanEvent, ScanAccepted, ScannedProduct

logger = get_logger(__name__)

MSG_SCAN_ACCEPTED = "Barcode berhasil diproses"


class ScanService:
    """Turns one scan event into one movement row and one stock decrement.

    Order of operations:

    1. resolve the barcode to exactly one product (else ``ProductNotFound``,
       nothing written);
    2. commit the ``out`` movement row (on failure ``AuditWriteFailure``,
       stock untouched);
    3. decrement stock with a single conditional UPDATE clamped at zero. A
       failure here is logged and the scan is still reported as accepted,
       since the movement log is the record of what happened.

    Replaying the same payload decrements again; events carry no
    idempotency key.
    """

    def __init__(self, db: Session):
        self.db = db

    def find_product(self, barcode: str) -> Product:
        # LIMIT 2 is enough to tell "exactly one" from "ambiguous"
        matches = self.db.execute(
            select(Product).where(Product.sku == barcode).limit(2)
        ).scalars().all()
        if len(matches) != 1:
            if matches:
                logger.warning(f"Barcode {barcode!r} matches more than one product, refusing scan")
            else:
                logger.info(f"Product not found for barcode {barcode!r}")
            raise ProductNotFound(barcode)
        return matches[0]

    def record_movement(self, product: Product, event: ScanEvent) -> InventoryMovement:
        movement = InventoryMovement(
            product_id=product.id,
            movement_type=MOVEMENT_OUT,
            quantity=1,
            notes=f"Scanned by ESP32 device: {event.device_id}",
            device_id=event.device_id,
        )
        try:
            self.db.add(movement)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error(f"Error recording movement for product {product.id}", exc_info=True)
            raise AuditWriteFailure() from exc
        return movement

    def decrement_stock(self, product_id: int) -> int:
        """Atomically apply quantity = max(0, quantity - 1) and return the result."""
        stmt = (
            update(Product)
            .where(Product.id == product_id)
            .values(quantity=case((Product.quantity > 0, Product.quantity - 1), else_=0))
            .returning(Product.quantity)
            .execution_options(synchronize_session=False)
        )
        try:
            new_quantity = self.db.execute(stmt).scalar_one()
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StockWriteFailure(product_id, exc) from exc
        return new_quantity

    def process(self, event: ScanEvent) -> ScanAccepted:
        set_request_context(device_id=event.device_id)
        logger.info(
            "Scan received",
            extra={'extra_fields': {
                'barcode': event.barcode,
                'device_id': event.device_id,
                'device_timestamp': event.timestamp,
            }},
        )

        product = self.find_product(event.barcode)
        old_quantity = product.quantity
        # Plain attributes survive the commits below regardless of expiry settings
        name, sku, category, product_id = product.name, product.sku, product.category, product.id

        movement_id = self.record_movement(product, event).id

        try:
            new_quantity = self.decrement_stock(product_id)
        except StockWriteFailure as exc:
            new_quantity = max(0, old_quantity - 1)
            logger.error(
                f"Error updating stock: {exc}",
                exc_info=exc.cause,
                extra={'extra_fields': {'product_id': product_id, 'movement_id': movement_id}},
            )

        logger.info(
            f"Stock for {sku} moved {old_quantity} -> {new_quantity}",
            extra={'extra_fields': {'product_id': product_id, 'movement_id': movement_id}},
        )
        return ScanAccepted(
            message=MSG_SCAN_ACCEPTED,
            product=ScannedProduct(
                name=name,
                sku=sku,
                old_quantity=old_quantity,
                new_quantity=new_quantity,
                category=category,
            ),
        )


class MovementService:
    def __init__(self, db: Session):
        self.db = db

    def recent(
        self,
        limit: int = 20,
        device_id: Optional[str] = None,
        scanned_only: bool = False,
    ) -> list[InventoryMovement]:
        """Newest movements first, with their product loaded."""
        stmt = select(InventoryMovement).options(joinedload(InventoryMovement.product))
        if device_id:
            stmt = stmt.where(InventoryMovement.device_id == device_id)
        elif scanned_only:
            stmt = stmt.where(InventoryMovement.device_id.is_not(None))
        stmt = stmt.order_by(InventoryMovement.created_at.desc(), InventoryMovement.id.desc()).limit(limit)
        return list(self.db.execute(stmt).scalars().all())
