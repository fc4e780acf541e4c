"""Forms for the registration app."""

from django import forms

from django_expo.settings import get_config


class TicketCheckoutForm(forms.Form):
    """Buyer details and ticket selection collected at checkout.

    Field lengths mirror the ``Ticket`` columns so oversized input is rejected
    here instead of failing at insert time. The quantity cap comes from
    ``DJANGO_EXPO['max_tickets_per_order']``.
    """

    ticket_type_id = forms.IntegerField(
        min_value=1,
        error_messages={
            "required": "A valid ticket type is required.",
            "invalid": "A valid ticket type is required.",
            "min_value": "A valid ticket type is required.",
        },
    )
    full_name = forms.CharField(max_length=200, error_messages={"required": "Full name is required."})
    email = forms.EmailField(
        max_length=254,
        error_messages={
            "required": "A valid email address is required.",
            "invalid": "A valid email address is required.",
        },
    )
    phone = forms.CharField(max_length=50, error_messages={"required": "Phone number is required."})

    def __init__(self, *args: object, **kwargs: object) -> None:
        """Build the form, adding a quantity field capped by configuration."""
        super().__init__(*args, **kwargs)
        max_quantity = get_config().max_tickets_per_order
        self.fields["quantity"] = forms.IntegerField(
            min_value=1,
            max_value=max_quantity,
            required=False,
            error_messages={
                "invalid": "Quantity must be at least 1.",
                "min_value": "Quantity must be at least 1.",
                "max_value": "At most %(limit_value)s tickets can be bought at once.",
            },
        )

    def clean_quantity(self) -> int:
        """Default a missing quantity to a single ticket."""
        quantity = self.cleaned_data.get("quantity")
        return 1 if quantity is None else quantity
