"""
Email notifications for Dugsi payment links.
"""

from __future__ import annotations

import logging

from django.conf import settings
from django.core.mail import send_mail
from django.utils.translation import gettext as _

from madrasa.billing.tuition import format_rate

logger = logging.getLogger(__name__)


def send_payment_link_email(
    to_email: str,
    parent_name: str,
    payment_url: str,
    amount: int,
    child_count: int,
) -> bool:
    """
    Email a family their Dugsi payment link.

    Args:
        to_email: Guardian email address.
        parent_name: Guardian name, used in the greeting.
        payment_url: Stripe Checkout URL.
        amount: Monthly family rate in cents.
        child_count: Number of children covered.

    Returns:
        True if the email was sent successfully, False otherwise.
    """
    if not to_email:
        logger.warning("Cannot send payment link email: no recipient")
        return False

    context = {
        "parent_name": parent_name or _("there"),
        "amount": format_rate(amount),
        "child_count": child_count,
        "payment_url": payment_url,
    }
    subject = _("Your Dugsi tuition payment link")
    plain_message = _(
        """Assalamu alaykum %(parent_name)s,

Please use the link below to set up monthly tuition of %(amount)s for
%(child_count)s child(ren) enrolled in Dugsi:

%(payment_url)s

Payments are drawn from your bank account each month.

JazakAllahu khayran,
The Dugsi Team
"""
    ) % context
    html_message = _(
        """<p>Assalamu alaykum %(parent_name)s,</p>

<p>Please use the link below to set up monthly tuition of
<strong>%(amount)s</strong> for %(child_count)s child(ren) enrolled in Dugsi.</p>

<p><a href="%(payment_url)s">Set up payment</a></p>

<p>Payments are drawn from your bank account each month.</p>

<p>JazakAllahu khayran,<br>
The Dugsi Team</p>
"""
    ) % context

    try:
        sent = send_mail(
            subject,
            plain_message,
            getattr(settings, "DEFAULT_FROM_EMAIL", None),
            [to_email],
            html_message=html_message,
        )
    except Exception:
        logger.exception("Error sending payment link email to %s", to_email)
        return False

    if sent == 0:
        logger.error("Email backend did not accept payment link email for %s", to_email)
        return False

    logger.info("Sent payment link email to %s", to_email)
    return True
