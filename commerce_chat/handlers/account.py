from __future__ import annotations

from typing import Any, Optional

from .base import HandlerBase, HandlerResult, guarded, ok


class AccountHandlersMixin(HandlerBase):
    @guarded("Không thể lấy thông tin tài khoản.")
    def get_user_profile(self, *, user_id: str, **_ignored: Any) -> HandlerResult:
        profile = self.services.users.get_profile(user_id)
        return ok(f"Xin chào {profile.get('name') or profile.get('email')}!", {"profile": profile})

    @guarded("Không thể lấy danh sách địa chỉ.")
    def get_user_addresses(self, *, user_id: str, **_ignored: Any) -> HandlerResult:
        addresses = self.services.users.list_addresses(user_id)
        if not addresses:
            return ok("Bạn chưa có địa chỉ nào.", {"addresses": []})
        return ok(f"Bạn có {len(addresses)} địa chỉ đã lưu.", {"addresses": addresses})

    @guarded("Không thể thêm địa chỉ giao hàng.")
    def add_delivery_address(
        self,
        *,
        user_id: str,
        name: Optional[str] = None,
        phone: Optional[str] = None,
        address: Optional[str] = None,
        province: Optional[str] = None,
        district: Optional[str] = None,
        ward: Optional[str] = None,
        **_ignored: Any,
    ) -> HandlerResult:
        created = self.services.users.add_address(
            user_id,
            {"name": name, "phone": phone, "address": address, "province": province, "district": district, "ward": ward},
        )
        return ok("Đã thêm địa chỉ giao hàng mới thành công!", {"address": created})
