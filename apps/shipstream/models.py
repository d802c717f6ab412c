"""
ShipStream Models - Shipments booked with the courier aggregator
Tables: Deliveries, TrackingEvents
Links to ShopCore via Order (one delivery per order)
"""
from django.db import models

from apps.core.models import BaseModel


class DeliveryStatus(models.TextChoices):
    CREATED = 'created', 'Shipment Created'
    SHIPPED = 'shipped', 'Shipped'
    IN_TRANSIT = 'in_transit', 'In Transit'
    OUT_FOR_DELIVERY = 'out_for_delivery', 'Out for Delivery'
    DELIVERED = 'delivered', 'Delivered'
    RETURNED = 'returned', 'Returned'
    CANCELLED = 'cancelled', 'Cancelled'
    LOST = 'lost', 'Lost'


class Delivery(BaseModel):
    """
    Courier shipment for an order.
    """
    order = models.OneToOneField('shopcore.Order', on_delete=models.CASCADE, related_name='delivery')
    provider_order_id = models.CharField(max_length=100, blank=True, default='')
    shipment_id = models.CharField(max_length=100, blank=True, default='')
    tracking_id = models.CharField(max_length=100, unique=True, blank=True, null=True, help_text="Courier AWB")
    courier_name = models.CharField(max_length=100, blank=True, default='')
    status = models.CharField(max_length=30, choices=DeliveryStatus.choices, default=DeliveryStatus.CREATED)
    current_location = models.CharField(max_length=255, blank=True, default='')
    estimated_delivery = models.DateTimeField(blank=True, null=True)
    delivered_at = models.DateTimeField(blank=True, null=True)
    tracking_url = models.URLField(blank=True, default='')
    remarks = models.TextField(blank=True, default='')

    class Meta:
        db_table = 'shipstream_deliveries'
        verbose_name = 'Delivery'
        verbose_name_plural = 'Deliveries'
        ordering = ['-created_at']

    def __str__(self):
        return f"Delivery {self.tracking_id or self.shipment_id} - {self.status}"

    @property
    def status_display(self) -> str:
        return DeliveryStatus(self.status).label if self.status in DeliveryStatus.values else self.status


class TrackingEvent(BaseModel):
    """
    Append-only history of a delivery's status changes.
    """
    SOURCE_CHOICES = [
        ('webhook', 'Courier Webhook'),
        ('manual', 'Manual Update'),
        ('provider', 'Provider Sync'),
    ]

    delivery = models.ForeignKey(Delivery, on_delete=models.CASCADE, related_name='tracking_events')
    status = models.CharField(max_length=30, choices=DeliveryStatus.choices)
    location = models.CharField(max_length=255, blank=True, default='')
    description = models.TextField(blank=True, default='')
    source = models.CharField(max_length=20, choices=SOURCE_CHOICES, default='provider')
    timestamp = models.DateTimeField()

    class Meta:
        db_table = 'shipstream_tracking_events'
        verbose_name = 'Tracking Event'
        verbose_name_plural = 'Tracking Events'
        ordering = ['-timestamp']

    def __str__(self):
        return f"{self.delivery.tracking_id} - {self.status} at {self.timestamp}"
