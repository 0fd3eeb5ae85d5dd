# bookings/__init__.py
from bookings.customers import CustomerResolver, generate_customer_code, normalize_phone
from bookings.materializer import BookingMaterializer, MaterializationState, build_booking_rows
from bookings.pricing import discount_percentage, split_evenly

__all__ = [
    "BookingMaterializer",
    "MaterializationState",
    "build_booking_rows",
    # Customers
    "CustomerResolver",
    "generate_customer_code",
    "normalize_phone",
    # Pricing
    "split_evenly",
    "discount_percentage",
]
