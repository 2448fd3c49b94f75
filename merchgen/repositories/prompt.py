"""PromptRepository for stored prompt overrides."""

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from merchgen.core.logging import db_logger, get_logger
from merchgen.models.prompt import Prompt

logger = get_logger(__name__)


class PromptRepository:
    """Repository for Prompt rows."""

    TABLE_NAME = "prompts"

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_key(self, key: str) -> Prompt | None:
        """Return the prompt row for `key`, active or not."""
        try:
            result = await self.session.execute(
                select(Prompt).where(Prompt.key == key)
            )
            return result.scalar_one_or_none()

        except SQLAlchemyError as e:
            logger.error(
                "Failed to fetch prompt",
                extra={
                    "prompt_key": key,
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                },
                exc_info=True,
            )
            raise

    async def get_active(self, key: str) -> Prompt | None:
        prompt = await self.get_by_key(key)
        if prompt is None or not prompt.is_active:
            return None
        return prompt

    async def upsert(
        self,
        key: str,
        template: str,
        name: str,
        description: str | None = None,
        variables: list[str] | None = None,
        category: str = "generation",
    ) -> Prompt:
        """Create or replace the template stored under `key`."""
        try:
            prompt = await self.get_by_key(key)
            if prompt is None:
                prompt = Prompt(
                    key=key,
                    name=name,
                    description=description,
                    template=template,
                    variables=variables or [],
                    category=category,
                    is_active=True,
                )
                self.session.add(prompt)
            else:
                prompt.template = template
                prompt.is_active = True
                if variables is not None:
                    prompt.variables = variables
            await self.session.flush()

            logger.info(
                "Prompt template saved",
                extra={"prompt_key": key, "template_length": len(template)},
            )
            return prompt

        except SQLAlchemyError as e:
            db_logger.transaction_failure(
                e, table=self.TABLE_NAME, context=f"Upserting prompt key={key}"
            )
            raise
