from typing import Dict, Optional
import logging

from fastapi import APIRouter, Depends

from stackspay.api.models.services import (
    PaymentInfo,
    SentimentResponse,
    ServiceDescription,
    ServiceListing,
    SummarizeResponse,
    TextRequest,
    TranslateRequest,
    TranslateResponse,
)
from stackspay.core.config import settings
from stackspay.x402.context import PaymentContext, current_payment_context
from stackspay.x402.middleware import RouteConfig
from stackspay.x402.pricing import micro_stx_to_stx

logger = logging.getLogger(__name__)

router = APIRouter()

# Prices of the paid endpoints, consumed by PaymentMiddleware in main.py
PAID_ROUTES: Dict[str, RouteConfig] = {
    "POST /summarize": RouteConfig(price="0.001", description="Summarize text into a brief overview"),
    "POST /translate": RouteConfig(price="0.001", description="Translate text to another language"),
    "POST /sentiment": RouteConfig(price="0.0005", description="Analyze text sentiment"),
}

SUMMARY_LENGTH = 100

MOCK_TRANSLATIONS = {
    "Hello": "Hola",
    "World": "Mundo",
    "Agent": "Agente",
    "Payment": "Pago",
}

POSITIVE_WORDS = {"good", "great", "excellent", "happy", "love", "amazing"}
NEGATIVE_WORDS = {"bad", "terrible", "hate", "awful", "sad", "angry"}


def payment_info(payment: Optional[PaymentContext]) -> Optional[PaymentInfo]:
    if payment is None:
        return None
    return PaymentInfo(txId=payment.tx_id, amount=f"{micro_stx_to_stx(payment.amount)} STX")


def _paid_by(payment: Optional[PaymentContext]) -> str:
    if payment is None:
        return "unpaid"
    return payment.tx_id or "pending"


@router.get("/services", response_model=ServiceListing)
async def list_services() -> ServiceListing:
    """
    Free discovery endpoint listing the paid capabilities and their prices.
    """
    io_shapes = {
        "POST /summarize": ({"text": "string"}, {"summary": "string"}),
        "POST /translate": (
            {"text": "string", "targetLanguage": "string"},
            {"translation": "string"},
        ),
        "POST /sentiment": (
            {"text": "string"},
            {"sentiment": "positive|negative|neutral", "score": "number"},
        ),
    }
    services = [
        ServiceDescription(
            endpoint=endpoint,
            price=f"{config.price} STX",
            description=config.description or "",
            input=io_shapes[endpoint][0],
            output=io_shapes[endpoint][1],
        )
        for endpoint, config in PAID_ROUTES.items()
    ]
    return ServiceListing(
        agent="Demo Seller Agent",
        description="AI agent offering text processing services",
        network=settings.X402_NETWORK,
        recipient=settings.X402_PAY_TO_ADDRESS,
        services=services,
    )


@router.post("/summarize", response_model=SummarizeResponse)
async def summarize(
    body: TextRequest,
    payment: Optional[PaymentContext] = Depends(current_payment_context),
) -> SummarizeResponse:
    """
    Summarize text: the first 100 characters plus the word count.
    """
    words = body.text.split()
    summary = body.text
    if len(summary) > SUMMARY_LENGTH:
        summary = summary[:SUMMARY_LENGTH] + "..."

    logger.info(f"Summarized {len(words)} words. Paid: {_paid_by(payment)}")
    return SummarizeResponse(
        summary=summary,
        wordCount=len(words),
        originalLength=len(body.text),
        payment=payment_info(payment),
    )


@router.post("/translate", response_model=TranslateResponse)
async def translate(
    body: TranslateRequest,
    payment: Optional[PaymentContext] = Depends(current_payment_context),
) -> TranslateResponse:
    """
    Word-by-word mock translation; unknown words are bracketed.
    """
    translation = " ".join(MOCK_TRANSLATIONS.get(word, f"[{word}]") for word in body.text.split())

    logger.info(f"Translated to {body.targetLanguage}. Paid: {_paid_by(payment)}")
    return TranslateResponse(
        translation=translation,
        targetLanguage=body.targetLanguage,
        payment=payment_info(payment),
    )


@router.post("/sentiment", response_model=SentimentResponse)
async def sentiment(
    body: TextRequest,
    payment: Optional[PaymentContext] = Depends(current_payment_context),
) -> SentimentResponse:
    words = body.text.lower().split()
    score = sum(1 for word in words if word in POSITIVE_WORDS) - sum(1 for word in words if word in NEGATIVE_WORDS)

    if score > 0:
        label = "positive"
    elif score < 0:
        label = "negative"
    else:
        label = "neutral"

    logger.info(f"Sentiment: {label} ({score}). Paid: {_paid_by(payment)}")
    return SentimentResponse(
        sentiment=label,
        score=score / len(words) if words else 0.0,
        wordCount=len(words),
        payment=payment_info(payment),
    )
