from enum import Enum


class CustomizationTypeEnum(str, Enum):
    TEXT = "TEXT"
    MULTIPLE_CHOICE = "MULTIPLE_CHOICE"
    IMAGES = "IMAGES"
    DYNAMIC_LAYOUT = "DYNAMIC_LAYOUT"
    BASE_LAYOUT = "BASE_LAYOUT"


class OrderStatusEnum(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELED = "CANCELED"
