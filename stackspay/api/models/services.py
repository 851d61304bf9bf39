from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class PaymentInfo(BaseModel):
    """
    Settlement receipt echoed back by paid endpoints.
    """
    txId: Optional[str] = None
    amount: str = Field(description="Amount paid in STX, e.g. '0.001 STX'")


class TextRequest(BaseModel):
    text: str = Field(min_length=1, description="Text to process")


class TranslateRequest(TextRequest):
    targetLanguage: str = "Spanish"


class SummarizeResponse(BaseModel):
    summary: str
    wordCount: int
    originalLength: int
    payment: Optional[PaymentInfo] = None


class TranslateResponse(BaseModel):
    translation: str
    sourceLanguage: str = "English"
    targetLanguage: str
    payment: Optional[PaymentInfo] = None


class SentimentResponse(BaseModel):
    sentiment: Literal["positive", "negative", "neutral"]
    score: float = Field(description="Keyword score normalised by word count")
    wordCount: int
    payment: Optional[PaymentInfo] = None


class ServiceDescription(BaseModel):
    """
    One paid capability in the service listing.
    """
    endpoint: str
    price: str
    description: str
    input: dict
    output: dict


class ServiceListing(BaseModel):
    agent: str
    description: str
    network: str
    recipient: str
    services: List[ServiceDescription]


class HealthResponse(BaseModel):
    status: str
    agent: str
    version: str
