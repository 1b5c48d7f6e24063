"""
点击归因应用服务

点击写入与推广者点击计数在同一事务内提交，计数不会与点击日志漂移。
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from application.dtos.affiliates import AffiliateStats, TrackClickCommand, TrackClickResult
from core.config import settings
from core.logging_config import get_logger
from core.settings import AffiliateSettings, affiliate_settings
from domain.affiliate.attribution import attribution_cookie_for, hash_ip, new_session_id, resolve_code
from domain.affiliate.entity import Affiliate, AffiliateClick
from domain.affiliate.exceptions import AffiliateNotFoundException, AttributionError
from domain.common.unit_of_work import AbstractUnitOfWork

logger = get_logger(__name__)


class AttributionService:
    """点击追踪与归因 cookie"""

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        *,
        config: AffiliateSettings = affiliate_settings,
        ip_salt: Optional[str] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._uow_factory = uow_factory
        self._config = config
        self._ip_salt = ip_salt or settings.IP_HASH_SALT
        self._clock = clock

    async def _lookup(self, uow: AbstractUnitOfWork, raw_code: str) -> tuple[Affiliate, bool]:
        """精确匹配优先，其次去掉亲友前缀后的基础码"""
        ff_prefix = self._config.ff_prefix if self._config.ff_enabled else None
        code, base_code = resolve_code(raw_code, ff_prefix=ff_prefix)
        affiliate = await uow.affiliates.get_by_code(code) if code else None
        friends_family = False
        if affiliate is None and base_code:
            affiliate = await uow.affiliates.get_by_code(base_code)
            friends_family = affiliate is not None
        if affiliate is None:
            raise AttributionError.invalid_code(code)
        if not affiliate.is_active:
            raise AttributionError.not_active(code)
        return affiliate, friends_family

    async def track_click(self, cmd: TrackClickCommand) -> TrackClickResult:
        now = self._clock()
        async with self._uow_factory() as uow:
            affiliate, friends_family = await self._lookup(uow, cmd.affiliate_code)
            session_id = new_session_id()
            await uow.clicks.create(
                AffiliateClick(
                    id=str(uuid.uuid4()),
                    affiliate_id=affiliate.id,
                    session_id=session_id,
                    ip_hash=hash_ip(cmd.ip_address, self._ip_salt),
                    user_agent=cmd.user_agent,
                    landing_url=cmd.landing_url,
                    referrer=cmd.referrer,
                    utm_source=cmd.utm_source,
                    utm_medium=cmd.utm_medium,
                    utm_campaign=cmd.utm_campaign,
                    friends_family=friends_family,
                )
            )
            await uow.affiliates.increment_clicks(affiliate.id)

        cookie_value = attribution_cookie_for(
            cmd.existing_cookie,
            affiliate.id,
            session_id,
            duration_days=self._config.cookie_duration_days,
            now=now,
        )
        logger.info(
            "affiliate_click_tracked",
            affiliate_id=affiliate.id,
            session_id=session_id,
            friends_family=friends_family,
            cookie_issued=cookie_value is not None,
        )
        return TrackClickResult(
            affiliate_id=affiliate.id,
            session_id=session_id,
            friends_family=friends_family,
            cookie_value=cookie_value,
            cookie_max_age=self._config.cookie_duration_days * 86400 if cookie_value else None,
        )

    async def get_affiliate_stats(self, affiliate_id: str) -> AffiliateStats:
        async with self._uow_factory(readonly=True) as uow:
            affiliate = await uow.affiliates.get_by_id(affiliate_id)
            if affiliate is None:
                raise AffiliateNotFoundException(affiliate_id)
            conversions = await uow.referrals.count_by_affiliate(affiliate_id)
        rate = round(conversions / affiliate.total_clicks * 100, 2) if affiliate.total_clicks else 0.0
        return AffiliateStats(
            affiliate_id=affiliate.id,
            total_clicks=affiliate.total_clicks,
            total_conversions=conversions,
            conversion_rate=rate,
            total_sales=affiliate.total_sales,
        )

    async def get_click_by_session(self, session_id: str) -> Optional[AffiliateClick]:
        async with self._uow_factory(readonly=True) as uow:
            return await uow.clicks.get_by_session_id(session_id)
