import base64
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, Optional, Tuple, Union

import google.generativeai as genai
import httpx
from openai import AsyncOpenAI
from openai.lib._pydantic import to_strict_json_schema
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

logger = logging.getLogger("moderation_worker")


class CategoryDetection(BaseModel):
    """Detection verdict for one content category"""
    detected: bool = Field(description="Whether this content category was detected")
    confidence: int = Field(description="Confidence level from 1 (low) to 5 (high)", ge=1, le=5)
    reason: str = Field(description="Brief explanation (1-2 sentences) for why this category was scored this way")


class SixteenPlusCategories(BaseModel):
    """Content categories for a 16+ rating"""
    cursing: CategoryDetection = Field(description="Cursing or mild profanity")
    moderate_violence: CategoryDetection = Field(description="Moderate violence with blood, but no gore or stabbing")
    strong_language: CategoryDetection = Field(description="Strong language, but not extreme profanity")
    mild_sexual_content: CategoryDetection = Field(description="Suggestive content or kissing")


class EighteenPlusCategories(BaseModel):
    """Content categories for an 18+ rating"""
    nudity: CategoryDetection = Field(description="Nudity or explicit sexual activities")
    drug_use: CategoryDetection = Field(description="Drug use or substance abuse")
    rape: CategoryDetection = Field(description="Sexual assault or rape")
    murder: CategoryDetection = Field(description="Murder or killing")
    stabbing: CategoryDetection = Field(description="Stabbing or piercing violence")
    gore: CategoryDetection = Field(description="Gore or graphic violence")
    extreme_profanity: CategoryDetection = Field(description="Frequent extreme profanity")
    disturbing_themes: CategoryDetection = Field(description="Disturbing themes such as abuse")


class ContentAnalysis(BaseModel):
    """Structured output from the content classification model"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    sixteen_plus: SixteenPlusCategories = Field(description="Content categories for 16+ rating")
    eighteen_plus: EighteenPlusCategories = Field(description="Content categories for 18+ rating")

    def categories(self) -> Iterator[Tuple[str, CategoryDetection]]:
        """Iterate over (name, detection) for all categories, 16+ first"""
        for name in SixteenPlusCategories.model_fields:
            yield name, getattr(self.sixteen_plus, name)
        for name in EighteenPlusCategories.model_fields:
            yield name, getattr(self.eighteen_plus, name)


CATEGORY_LABELS = {
    "cursing": "Cursing",
    "moderate_violence": "Moderate Violence",
    "strong_language": "Strong Language",
    "mild_sexual_content": "Mild Sexual Content",
    "nudity": "Nudity",
    "drug_use": "Drug Use",
    "rape": "Sexual Assault",
    "murder": "Murder",
    "stabbing": "Stabbing",
    "gore": "Gore",
    "extreme_profanity": "Extreme Profanity",
    "disturbing_themes": "Disturbing Themes",
}


MATURE_CONTENT_RATING_PROMPT = """You are a content moderation AI analyzing images for age-appropriate content ratings.

Your task is to carefully analyze the provided image and detect the presence of various content categories that determine age ratings.

## Rating Guidelines:

### 16+ Content (Over 16 years old):
- **Cursing**: Mild to moderate profanity, curse words
- **Moderate Violence**: Violence with blood visible, but NO gore or stabbing
- **Strong Language**: Strong language and harsh words, but not extreme profanity
- **Mild Sexual Content**: Suggestive content, kissing, romantic scenes without explicit activity

### 18+ Content (Over 18 years old):
- **Nudity**: Nudity or explicit sexual activities
- **Drug Use**: Drug use or substance abuse depicted
- **Rape**: Sexual assault or rape depicted
- **Murder**: Murder or killing depicted
- **Stabbing**: Stabbing or piercing violence
- **Gore**: Gore, graphic violence, or extreme bodily harm
- **Extreme Profanity**: Frequent use of extreme profanity
- **Disturbing Themes**: Disturbing themes such as abuse, torture, or psychological horror

## Instructions:

1. Analyze the image carefully for each category
2. For each category, determine:
   - **detected**: true if the content is present, false otherwise
   - **confidence**: Your confidence level from 1 (low certainty) to 5 (high certainty)
   - **reason**: A brief explanation (1-2 sentences) explaining WHY you scored this category the way you did. If content is detected, describe what you observed. If not detected, briefly explain why.

3. Be thorough but fair - don't over-flag content
4. Consider context - artistic or educational content may be acceptable
5. When in doubt, err on the side of caution for user safety

Provide your analysis in the structured format requested."""


def build_prompt(description: Optional[str] = None) -> str:
    """Rubric prompt, optionally extended with context about the image"""
    prompt = MATURE_CONTENT_RATING_PROMPT
    if description:
        prompt += f"\n\nAdditional context: {description}"
    return prompt


def strict_json_schema() -> Dict[str, Any]:
    """JSON schema of ContentAnalysis in the form strict structured outputs accept"""
    # Inlines $ref nodes that carry a description and marks every property required
    return to_strict_json_schema(ContentAnalysis)


def image_to_url(image: Union[bytes, str]) -> str:
    """Frame bytes become a base64 data URL; URLs pass through unchanged"""
    if isinstance(image, (bytes, bytearray)):
        encoded = base64.b64encode(bytes(image)).decode('utf-8')
        return f"data:image/jpeg;base64,{encoded}"
    return image


class ContentClassifier(ABC):
    """Black-box content classification model"""

    @abstractmethod
    async def classify(self, image: Union[bytes, str]) -> ContentAnalysis:
        """
        Classify one image against the 16+/18+ rubric.

        Args:
            image: JPEG bytes or a URL the model can fetch

        Returns:
            ContentAnalysis with a verdict for every category
        """
        pass


class OpenAIClassifier(ContentClassifier):
    """Classifies frames with an OpenAI vision model using structured outputs"""

    def __init__(self, model: str = "gpt-4o", base_url: Optional[str] = None, client: Optional[AsyncOpenAI] = None):
        self.model = model
        self.base_url = base_url or None
        self._client = client
        self._schema = strict_json_schema()

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(base_url=self.base_url)
        return self._client

    async def classify(self, image: Union[bytes, str]) -> ContentAnalysis:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": build_prompt()},
                        {"type": "image_url", "image_url": {"url": image_to_url(image)}}
                    ]
                }
            ],
            response_format={
                "type": "json_schema",
                "json_schema": {
                    "name": "content_analysis",
                    "schema": self._schema,
                    "strict": True
                }
            },
            temperature=0.1
        )

        # Parse the structured response
        content = response.choices[0].message.content
        if not content:
            raise ValueError("Classification model returned an empty response")

        analysis = ContentAnalysis.model_validate(json.loads(content))
        logger.debug(f"Classification completed with model {self.model}")
        return analysis


class GeminiClassifier(ContentClassifier):
    """Classifies frames with a Google Gemini vision model, answering in JSON"""

    def __init__(self, model: str = "gemini-2.5-flash-lite", api_key: Optional[str] = None, generative_model=None):
        self.model = model
        self.api_key = api_key
        self._generative_model = generative_model
        self._prompt = (
            build_prompt()
            + "\n\nRespond with a single JSON object matching this schema:\n"
            + json.dumps(strict_json_schema())
        )

    @property
    def generative_model(self):
        if self._generative_model is None:
            genai.configure(api_key=self.api_key)
            self._generative_model = genai.GenerativeModel(
                self.model,
                generation_config={"response_mime_type": "application/json", "temperature": 0.1}
            )
        return self._generative_model

    async def _image_part(self, image: Union[bytes, str]) -> Dict[str, Any]:
        if isinstance(image, (bytes, bytearray)):
            return {"mime_type": "image/jpeg", "data": bytes(image)}

        # Gemini takes inline image data only
        async with httpx.AsyncClient(timeout=30.0) as client:
            response = await client.get(image)
            response.raise_for_status()
        return {"mime_type": response.headers.get("content-type", "image/jpeg"), "data": response.content}

    async def classify(self, image: Union[bytes, str]) -> ContentAnalysis:
        image_part = await self._image_part(image)
        response = await self.generative_model.generate_content_async([self._prompt, image_part])

        content = parse_json_response(response.text)
        analysis = ContentAnalysis.model_validate(content)
        logger.debug(f"Classification completed with model {self.model}")
        return analysis


def parse_json_response(text: Optional[str]) -> Any:
    """Decode a model's JSON answer, tolerating a surrounding markdown code block"""
    text = (text or "").strip()
    if not text:
        raise ValueError("Classification model returned an empty response")
    if text.startswith("```"):
        lines = text.split("\n")
        text = "\n".join(lines[1:-1] if lines[-1].strip() == "```" else lines[1:])
    return json.loads(text.strip())
