"""
Chatbot collaborator - generates proactive SMS text with OpenAI
"""
import logging
from typing import Optional

import openai

from ..scheduling.errors import PermanentDeliveryError, TransientDeliveryError

logger = logging.getLogger("chatbot")

CONTEXT_POST_CONSULT = "post_consult"
CONTEXT_NO_SHOW_RECOVERY = "no_show_recovery"

CONTEXT_PROMPTS = {
    CONTEXT_POST_CONSULT: (
        "The patient just finished their consultation. Ask if they have any "
        "follow-up questions and gently encourage them toward next steps."
    ),
    CONTEXT_NO_SHOW_RECOVERY: (
        "The patient missed their consultation yesterday. Reach out warmly, ask "
        "if everything is okay, and offer to help reschedule."
    ),
}

TRANSIENT_OPENAI_ERRORS = (
    openai.APIConnectionError,
    openai.APITimeoutError,
    openai.RateLimitError,
    openai.InternalServerError,
)


def build_system_prompt(clinic_name: str) -> str:
    return (
        f"You are the patient-care assistant for {clinic_name}, texting patients on "
        "behalf of the clinic's physicians. Be warm, concise and professional. "
        "This is SMS: keep replies to two or three short sentences, never pushy, "
        "and never give medical advice you are unsure of."
    )


class ChatbotClient:
    """Generates one-off outbound messages for chatbot follow-ups"""

    def __init__(
        self,
        api_key: Optional[str],
        clinic_name: str,
        model: str = "gpt-4o-mini",
        client: Optional[openai.OpenAI] = None
    ):
        self.client = client or openai.OpenAI(api_key=api_key)
        self.clinic_name = clinic_name
        self.model = model

    def generate_proactive_message(self, patient_first_name: str, context: str) -> str:
        """
        Generate an outbound message for a conversation context

        Raises:
            TransientDeliveryError: Provider unavailable or rate limited
            PermanentDeliveryError: Request rejected or empty response
        """
        instructions = CONTEXT_PROMPTS.get(context)
        if instructions is None:
            raise PermanentDeliveryError(f"Unknown chatbot context: {context}")

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": build_system_prompt(self.clinic_name)},
                    {
                        "role": "user",
                        "content": f"Patient first name: {patient_first_name}. {instructions} "
                                   "Write the text message only."
                    }
                ],
                max_tokens=300,
                temperature=0.7
            )
        except TRANSIENT_OPENAI_ERRORS as e:
            logger.error(f"Chatbot generation failed (transient): {e}")
            raise TransientDeliveryError(f"Chatbot unavailable: {e}") from e
        except openai.OpenAIError as e:
            logger.error(f"Chatbot generation failed: {e}")
            raise PermanentDeliveryError(f"Chatbot request rejected: {e}") from e

        if response.choices and response.choices[0].message and response.choices[0].message.content:
            return response.choices[0].message.content.strip()

        raise PermanentDeliveryError("Chatbot returned an empty message")


class StaticChatbot:
    """Canned messages for dry runs and tests"""

    def __init__(self, clinic_name: str = "the clinic"):
        self.clinic_name = clinic_name
        self.requests = []

    def generate_proactive_message(self, patient_first_name: str, context: str) -> str:
        self.requests.append((patient_first_name, context))
        if context == CONTEXT_NO_SHOW_RECOVERY:
            return (
                f"Hi {patient_first_name}, it's {self.clinic_name}. We missed you yesterday "
                "and hope all is well. Want help finding a new time?"
            )
        return (
            f"Hi {patient_first_name}, thanks again for meeting with {self.clinic_name}. "
            "Any questions about next steps? Just reply here."
        )
