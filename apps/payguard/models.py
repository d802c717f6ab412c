"""
PayGuard Models - Online payments
Tables: Payments
Links to ShopCore via Order (one order may see several payment attempts)
"""
from django.db import models

from apps.core.models import BaseModel


class Payment(BaseModel):
    """
    One payment attempt against an order's provider intent.
    `provider_payment_id` is unique so a capture is only ever recorded once.
    """
    STATUS_PENDING = 'pending'
    STATUS_COMPLETED = 'completed'
    STATUS_FAILED = 'failed'
    STATUS_REFUND_PENDING = 'refund_pending'
    STATUS_REFUNDED = 'refunded'

    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_FAILED, 'Failed'),
        (STATUS_REFUND_PENDING, 'Refund Pending'),
        (STATUS_REFUNDED, 'Refunded'),
    ]

    SUCCESSFUL_STATUSES = (STATUS_COMPLETED, STATUS_REFUND_PENDING, STATUS_REFUNDED)

    order = models.ForeignKey('shopcore.Order', on_delete=models.CASCADE, related_name='payments')
    provider_order_id = models.CharField(max_length=100, db_index=True)
    provider_payment_id = models.CharField(max_length=100, unique=True)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3, default='INR')
    method = models.CharField(max_length=30, blank=True, default='', help_text="card, upi, netbanking, wallet")
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING)
    fee = models.DecimalField(max_digits=10, decimal_places=2, blank=True, null=True)
    tax = models.DecimalField(max_digits=10, decimal_places=2, blank=True, null=True)
    error_description = models.CharField(max_length=255, blank=True, default='')
    refund_id = models.CharField(max_length=100, blank=True, default='')
    refunded_amount = models.DecimalField(max_digits=12, decimal_places=2, blank=True, null=True)
    refunded_at = models.DateTimeField(blank=True, null=True)

    class Meta:
        db_table = 'payguard_payments'
        verbose_name = 'Payment'
        verbose_name_plural = 'Payments'
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.provider_payment_id} - {self.amount} {self.currency} ({self.status})"
