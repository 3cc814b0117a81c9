"""
System Setting Service - admin-editable runtime settings
"""
import json
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from errands.core.config import settings
from errands.core.exceptions import PersistenceError, ValidationException
from errands.core.logging import get_logger
from errands.db.models.system_setting import SettingType, SystemSetting

logger = get_logger(__name__)

GCASH_NUMBER_KEY = "gcash_number"
GCASH_ACCOUNT_NAME_KEY = "gcash_account_name"
AUTO_APPROVE_KEY = "errand_payment_auto_approve"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def parse_setting_value(value: Optional[str], setting_type: SettingType) -> Any:
    """Convert the stored text to the setting's type"""
    if value is None:
        return None
    if setting_type == SettingType.BOOLEAN:
        normalized = value.strip().lower()
        if normalized in _TRUE_VALUES:
            return True
        if normalized in _FALSE_VALUES:
            return False
        raise ValidationException(f"Not a boolean setting value: {value}", field="value")
    if setting_type == SettingType.NUMBER:
        try:
            return float(value)
        except ValueError:
            raise ValidationException(f"Not a numeric setting value: {value}", field="value")
    if setting_type == SettingType.JSON:
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            raise ValidationException("Setting value is not valid JSON", field="value")
    return value


def serialize_setting_value(value: Any, setting_type: SettingType) -> str:
    if setting_type == SettingType.BOOLEAN:
        return "true" if value else "false"
    if setting_type == SettingType.JSON:
        return json.dumps(value)
    return str(value)


class SystemSettingService:
    """Read and write SystemSetting rows; callers commit"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_setting(self, key: str) -> Optional[SystemSetting]:
        result = await self.db.execute(select(SystemSetting).where(SystemSetting.key == key))
        return result.scalar_one_or_none()

    async def get(self, key: str, default: Any = None) -> Any:
        """Typed value of the setting, or default when it is not stored"""
        setting = await self.get_setting(key)
        if setting is None or setting.value is None:
            return default
        return parse_setting_value(setting.value, setting.type)

    async def set(
        self,
        key: str,
        value: Any,
        setting_type: SettingType = SettingType.STRING,
        description: Optional[str] = None,
    ) -> SystemSetting:
        """Insert or update a setting (flushed, not committed)"""
        setting = await self.get_setting(key)
        if setting is None:
            setting = SystemSetting(key=key, type=setting_type)
            self.db.add(setting)

        setting.value = serialize_setting_value(value, setting_type)
        setting.type = setting_type
        if description is not None:
            setting.description = description

        await self.db.flush()
        logger.info("System setting updated", extra_data={"key": key})
        return setting

    async def get_gcash_info(self) -> dict:
        return {
            "number": await self.get(GCASH_NUMBER_KEY, settings.DEFAULT_GCASH_NUMBER),
            "account_name": await self.get(GCASH_ACCOUNT_NAME_KEY, settings.DEFAULT_GCASH_ACCOUNT_NAME),
        }

    async def set_gcash_info(self, number: str, account_name: str) -> dict:
        await self.set(GCASH_NUMBER_KEY, number, description="GCash phone number for balance payments")
        await self.set(
            GCASH_ACCOUNT_NAME_KEY, account_name, description="GCash account name for balance payments"
        )
        return {"number": number, "account_name": account_name}

    async def is_auto_approve_enabled(self) -> bool:
        """Stored override first, then ERRAND_PAYMENT_AUTO_APPROVE"""
        return bool(await self.get(AUTO_APPROVE_KEY, settings.ERRAND_PAYMENT_AUTO_APPROVE))

    async def set_auto_approve(self, enabled: bool) -> bool:
        await self.set(
            AUTO_APPROVE_KEY,
            enabled,
            setting_type=SettingType.BOOLEAN,
            description="Approve errand payments as soon as the customer verifies them",
        )
        return enabled

    async def commit(self, operation: str) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                "System setting update failed",
                extra_data={"operation": operation, "error": str(e)},
                exc_info=True,
            )
            raise PersistenceError(operation)
