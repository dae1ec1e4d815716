from app.models.bot_step import BotStep
from app.models.chat_session import ChatSession
from app.models.client import Client
from app.models.invoice import Invoice
from app.models.message import Message
from app.models.payment import Payment
from app.models.ticket import Ticket

__all__ = [
    "Client",
    "ChatSession",
    "Message",
    "BotStep",
    "Invoice",
    "Payment",
    "Ticket",
]
