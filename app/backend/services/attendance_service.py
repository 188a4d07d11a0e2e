import logging
from typing import Dict, Literal, Optional

from pydantic import BaseModel

from ..models.db_models import AttendanceLog, AttendanceType, User
from ..modules.timekeys import date_key, ensure_aware, local_now
from .errors import ServiceError
from .log_store import LogStore
from .user_directory import UserDirectory

logger = logging.getLogger(__name__)

FORCED_CHECKOUT_MEMO = "Forced checkout by system"
FORCED_CHECKOUT_CARD = "auto_checkout"


class ToggleResult(BaseModel):
    """What the kiosk shows after a scan or a manual entry."""
    status: Literal["success", "unregistered", "error"]
    action: Optional[AttendanceType] = None
    user_name: Optional[str] = None
    message: str
    sub_message: Optional[str] = None


class ClockOutSummary(BaseModel):
    success: int = 0
    no_action: int = 0
    failed: int = 0


def _success(user: User, action: AttendanceType) -> ToggleResult:
    action_message = "出勤を記録しました" if action == "entry" else "退勤を記録しました"
    return ToggleResult(
        status="success",
        action=action,
        user_name=user.display_name,
        message=f"ようこそ、{user.display_name}さん",
        sub_message=action_message
    )


def _error() -> ToggleResult:
    return ToggleResult(status="error", message="エラーが発生しました", sub_message="もう一度お試しください")


class AttendanceService:
    """
    Turns kiosk input into attendance logs. A user's state is the type of
    their latest log: after an entry the next tap is an exit, otherwise an entry.
    """
    def __init__(self, log_store: LogStore, user_directory: UserDirectory):
        self.log_store = log_store
        self.user_directory = user_directory

    async def toggle_by_card(self, card_id: str) -> ToggleResult:
        """
        Records the next entry/exit for the owner of card_id.

        There is no isolation between reading the latest log and writing the
        new one: two concurrent taps of the same card can both record an entry.
        """
        card_id = card_id.strip()
        logger.info(f"Card '{card_id}' scanned.")
        try:
            user = await self.user_directory.find_by_card_id(card_id)
            if not user:
                logger.info(f"Card '{card_id}' is not registered.")
                return ToggleResult(
                    status="unregistered",
                    message="未登録のカードです",
                    sub_message="登録するには「/」キーを押してください"
                )

            latest = await self.log_store.latest_log_for_user(user.uid)
            action: AttendanceType = "exit" if latest and latest.type == "entry" else "entry"
            log = await self.log_store.append_log(date_key(local_now()), user.uid, action, card_id=card_id)
        except Exception as e:
            logger.error(f"Attendance toggle failed for card '{card_id}': {e}", exc_info=True)
            return _error()

        await self._mirror_status(user, log)
        return _success(user, action)

    async def record_manual(self, uid: str, action: AttendanceType) -> ToggleResult:
        """Records an operator-chosen entry or exit for a user picked on the kiosk."""
        try:
            user = await self.user_directory.get_user(uid)
            if not user:
                logger.warning(f"Manual attendance requested for unknown user '{uid}'.")
                return ToggleResult(status="error", message="ユーザーが見つかりません")
            log = await self.log_store.append_log(date_key(local_now()), user.uid, action, card_id=user.card_id)
        except Exception as e:
            logger.error(f"Manual attendance failed for user '{uid}': {e}", exc_info=True)
            return _error()

        await self._mirror_status(user, log)
        return _success(user, action)

    async def get_user_status(self, uid: str) -> Literal["active", "inactive", "unknown"]:
        """
        Present state from the latest log. 'unknown' means nothing was found in
        the lookback window, which is not the same as never having attended.
        """
        try:
            latest = await self.log_store.latest_log_for_user(uid)
        except Exception as e:
            logger.error(f"Failed to resolve the status of user '{uid}'.", exc_info=True)
            raise ServiceError("The attendance status could not be determined.") from e
        if latest is None:
            return "unknown"
        return "active" if latest.type == "entry" else "inactive"

    async def force_clock_out_all(self) -> ClockOutSummary:
        """Records an exit for every user whose latest log today is an entry."""
        logger.info("Starting forced clock-out.")
        today = date_key(local_now())
        summary = ClockOutSummary()

        latest_today: Dict[str, AttendanceLog] = {}
        for log in await self.log_store.query_date_logs(today):
            current = latest_today.get(log.uid)
            if current is None or ensure_aware(log.timestamp) > ensure_aware(current.timestamp):
                latest_today[log.uid] = log

        for user in await self.user_directory.all_users():
            latest = latest_today.get(user.uid)
            if latest is None or latest.type != "entry":
                summary.no_action += 1
                continue
            try:
                log = await self.log_store.append_log(
                    today, user.uid, "exit",
                    card_id=user.card_id or FORCED_CHECKOUT_CARD,
                    memo=FORCED_CHECKOUT_MEMO
                )
                await self._mirror_status(user, log)
                summary.success += 1
                logger.info(f"Forced exit recorded for {user.display_name} ({user.uid}).")
            except Exception:
                summary.failed += 1
                logger.error(f"Forced exit failed for user '{user.uid}'.", exc_info=True)

        logger.info(f"Forced clock-out finished. success={summary.success}, no_action={summary.no_action}, failed={summary.failed}")
        return summary

    async def _mirror_status(self, user: User, log: AttendanceLog):
        """Best-effort copy of the latest log onto the user document; aggregation never reads it."""
        try:
            await self.user_directory.update_user(user.uid, {
                "status": "active" if log.type == "entry" else "inactive",
                "last_activity": log.timestamp
            })
        except Exception:
            logger.warning(f"Could not mirror attendance status onto user '{user.uid}'.", exc_info=True)
