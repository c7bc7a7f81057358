"""Alert rendering and delivery."""

from dex_buy_tracker.alerter.formatter import BuyAlertFormatter, FormattedAlert
from dex_buy_tracker.alerter.queue import DispatchQueue
from dex_buy_tracker.alerter.telegram import TelegramAlertChannel, TelegramDeliveryError

__all__ = [
    "BuyAlertFormatter",
    "DispatchQueue",
    "FormattedAlert",
    "TelegramAlertChannel",
    "TelegramDeliveryError",
]
