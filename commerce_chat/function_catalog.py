"""Static catalog of business functions exposed to the language model.

Each entry has a unique ``name``, a Vietnamese ``description`` the model reads,
and a JSON-schema-like ``parameters`` object. Parameter names stay camelCase
because they travel to and from the model verbatim; dispatch converts them to
keyword arguments. The catalog is built once at import and never mutated.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional


def _string(description: str) -> Dict[str, Any]:
    return {"type": "string", "description": description}


def _number(description: str) -> Dict[str, Any]:
    return {"type": "number", "description": description}


def _string_list(description: str) -> Dict[str, Any]:
    return {"type": "array", "items": {"type": "string"}, "description": description}


def _declare(
    name: str,
    description: str,
    properties: Optional[Dict[str, Dict[str, Any]]] = None,
    required: Optional[List[str]] = None,
) -> Dict[str, Any]:
    parameters: Dict[str, Any] = {"type": "object", "properties": properties or {}}
    if required:
        parameters["required"] = list(required)
    return {"name": name, "description": description, "parameters": parameters}


LIMIT_PRODUCTS = _number("Số lượng sản phẩm")
OPTIONAL_CATEGORY = _string("Danh mục (optional)")

FUNCTION_DECLARATIONS: List[Dict[str, Any]] = [
    # Product search & discovery
    _declare(
        "search_products",
        "Tìm kiếm sản phẩm theo từ khóa, hỗ trợ lọc theo danh mục và giá",
        {
            "query": _string("Từ khóa tìm kiếm"),
            "category": OPTIONAL_CATEGORY,
            "minPrice": _number("Giá tối thiểu"),
            "maxPrice": _number("Giá tối đa"),
            "limit": _number("Số lượng kết quả"),
        },
    ),
    _declare(
        "get_product_details",
        "Lấy thông tin chi tiết sản phẩm. Nếu người dùng nói 'sản phẩm này' hãy dùng ID sản phẩm vừa hiển thị.",
        {"productId": _string("ID sản phẩm"), "slug": _string("Đường dẫn sản phẩm (nếu biết)")},
        ["productId"],
    ),
    _declare("browse_categories", "Xem danh sách danh mục sản phẩm"),
    _declare(
        "get_products_by_category",
        "Lấy sản phẩm theo danh mục",
        {"category": _string("Tên hoặc ID danh mục"), "limit": LIMIT_PRODUCTS},
        ["category"],
    ),
    # Cart
    _declare(
        "add_to_cart",
        "Thêm sản phẩm vào giỏ hàng. Nếu người dùng đề cập đến 'sản phẩm này', 'cái đó', 'món này' "
        "hoặc tương tự, hãy sử dụng productId từ sản phẩm vừa được hiển thị trong cuộc hội thoại.",
        {
            "productId": _string("ID sản phẩm cần thêm"),
            "quantity": _number("Số lượng"),
            "variantId": _string("ID biến thể (nếu có)"),
        },
        ["productId"],
    ),
    _declare("view_cart", "Xem giỏ hàng hiện tại"),
    _declare(
        "remove_from_cart",
        "Xóa sản phẩm khỏi giỏ hàng",
        {"productId": _string("ID sản phẩm cần xóa")},
        ["productId"],
    ),
    _declare(
        "update_cart_item",
        "Cập nhật số lượng sản phẩm trong giỏ",
        {"productId": _string("ID sản phẩm"), "quantity": _number("Số lượng mới")},
        ["productId", "quantity"],
    ),
    # Orders
    _declare("get_user_orders", "Lấy danh sách đơn hàng của người dùng", {"limit": _number("Số lượng đơn hàng")}),
    _declare(
        "get_order_details",
        "Xem chi tiết đơn hàng với timeline trạng thái và các hành động gợi ý",
        {"orderId": _string("ID đơn hàng")},
        ["orderId"],
    ),
    _declare(
        "check_order_status",
        "Kiểm tra trạng thái đơn hàng",
        {"orderId": _string("ID đơn hàng")},
        ["orderId"],
    ),
    _declare(
        "cancel_order",
        "Hủy đơn hàng",
        {"orderId": _string("ID đơn hàng cần hủy"), "reason": _string("Lý do hủy đơn")},
        ["orderId"],
    ),
    _declare(
        "create_order_from_cart",
        "Tạo đơn hàng từ giỏ hàng",
        {
            "addressId": _string("ID địa chỉ giao hàng"),
            "paymentMethod": _string("Phương thức thanh toán (COD/VNPAY)"),
            "notes": _string("Ghi chú cho đơn hàng"),
        },
    ),
    # Payment
    _declare(
        "create_payment_link",
        "Tạo link thanh toán cho đơn hàng",
        {"orderId": _string("ID đơn hàng")},
        ["orderId"],
    ),
    _declare(
        "check_payment_status",
        "Kiểm tra trạng thái thanh toán",
        {"orderId": _string("ID đơn hàng")},
        ["orderId"],
    ),
    # Vouchers
    _declare(
        "validate_voucher",
        "Kiểm tra mã voucher",
        {"voucherCode": _string("Mã voucher")},
        ["voucherCode"],
    ),
    _declare("get_best_voucher", "Tìm voucher tốt nhất cho giỏ hàng"),
    _declare("get_user_vouchers", "Lấy danh sách voucher của người dùng"),
    _declare(
        "apply_voucher_to_cart",
        "Áp dụng voucher vào giỏ hàng",
        {"voucherCode": _string("Mã voucher")},
        ["voucherCode"],
    ),
    # Profile & addresses
    _declare("get_user_profile", "Lấy thông tin profile người dùng"),
    _declare("get_user_addresses", "Lấy danh sách địa chỉ giao hàng"),
    _declare(
        "add_delivery_address",
        "Thêm địa chỉ giao hàng mới",
        {
            "name": _string("Tên người nhận"),
            "phone": _string("Số điện thoại"),
            "address": _string("Địa chỉ chi tiết"),
            "province": _string("Tỉnh/Thành phố"),
            "district": _string("Quận/Huyện"),
            "ward": _string("Phường/Xã"),
        },
        ["name", "phone", "address"],
    ),
    # Recommendations & discovery
    _declare("get_flash_sale_products", "Lấy sản phẩm đang flash sale", {"limit": LIMIT_PRODUCTS}),
    _declare(
        "recommend_products",
        "Gợi ý sản phẩm cho người dùng",
        {"keyword": _string("Từ khóa sở thích (optional)"), "limit": LIMIT_PRODUCTS},
    ),
    _declare(
        "get_similar_products",
        "Lấy sản phẩm tương tự",
        {"productId": _string("ID sản phẩm gốc"), "limit": LIMIT_PRODUCTS},
        ["productId"],
    ),
    _declare(
        "get_bestselling_products",
        "Lấy sản phẩm bán chạy",
        {"category": OPTIONAL_CATEGORY, "limit": LIMIT_PRODUCTS},
    ),
    _declare("get_trending_products", "Lấy sản phẩm đang thịnh hành", {"limit": LIMIT_PRODUCTS}),
    _declare(
        "get_new_arrivals",
        "Lấy sản phẩm mới về",
        {"category": OPTIONAL_CATEGORY, "days": _number("Số ngày gần đây"), "limit": LIMIT_PRODUCTS},
    ),
    _declare(
        "get_hot_trending_products",
        "Lấy sản phẩm hot/trending",
        {
            "category": OPTIONAL_CATEGORY,
            "timeFrame": _string("Khung thời gian (day/week/month)"),
            "limit": LIMIT_PRODUCTS,
        },
    ),
    # Reviews
    _declare(
        "create_product_review",
        "Tạo đánh giá sản phẩm",
        {
            "productId": _string("ID sản phẩm"),
            "rating": _number("Điểm đánh giá (1-5)"),
            "comment": _string("Nội dung đánh giá"),
        },
        ["productId", "rating"],
    ),
    _declare(
        "get_product_reviews",
        "Xem đánh giá sản phẩm",
        {"productId": _string("ID sản phẩm"), "limit": _number("Số lượng đánh giá")},
        ["productId"],
    ),
    # Comparison & filtering
    _declare(
        "compare_products",
        "So sánh nhiều sản phẩm",
        {"productIds": _string_list("Danh sách ID sản phẩm cần so sánh")},
        ["productIds"],
    ),
    _declare(
        "filter_products_by_price",
        "Lọc sản phẩm theo khoảng giá. Hỗ trợ sắp xếp theo giá cao nhất/thấp nhất.",
        {
            "minPrice": _number("Giá tối thiểu"),
            "maxPrice": _number("Giá tối đa"),
            "category": OPTIONAL_CATEGORY,
            "sortBy": _string("Sắp xếp theo giá: 'highest' (cao nhất) hoặc 'lowest' (thấp nhất)"),
            "limit": LIMIT_PRODUCTS,
        },
    ),
    _declare(
        "get_products_by_rating",
        "Lọc sản phẩm theo đánh giá",
        {"minRating": _number("Điểm đánh giá tối thiểu (1-5)"), "category": OPTIONAL_CATEGORY, "limit": LIMIT_PRODUCTS},
    ),
    _declare(
        "filter_products_by_attributes",
        "Lọc sản phẩm theo thuộc tính (size, màu, brand)",
        {
            "category": OPTIONAL_CATEGORY,
            "size": _string("Kích thước"),
            "color": _string("Màu sắc"),
            "brand": _string("Thương hiệu"),
            "limit": LIMIT_PRODUCTS,
        },
    ),
    # Stock & shipping
    _declare(
        "check_stock_availability",
        "Kiểm tra tồn kho sản phẩm",
        {"productId": _string("ID sản phẩm"), "variantId": _string("ID biến thể (nếu có)")},
        ["productId"],
    ),
    _declare(
        "calculate_shipping_fee",
        "Tính phí vận chuyển",
        {"addressId": _string("ID địa chỉ giao hàng"), "city": _string("Tỉnh/Thành phố (nếu chưa có địa chỉ)")},
    ),
    _declare(
        "get_low_stock_products",
        "Lấy sản phẩm sắp hết hàng, hoặc mức độ khan hiếm của một sản phẩm",
        {"productId": _string("ID sản phẩm (optional)"), "limit": LIMIT_PRODUCTS},
    ),
    # Personalization
    _declare("get_user_purchase_history", "Lấy lịch sử mua hàng", {"limit": _number("Số lượng đơn hàng")}),
    _declare("get_personalized_recommendations", "Gợi ý sản phẩm cá nhân hóa", {"limit": LIMIT_PRODUCTS}),
    _declare(
        "track_user_behavior",
        "Theo dõi hành vi người dùng",
        {"action": _string("Loại hành động (view/click/add_to_cart)"), "productId": _string("ID sản phẩm (nếu có)")},
        ["action"],
    ),
    _declare("get_user_preferences", "Lấy sở thích người dùng"),
    _declare(
        "get_recent_purchases",
        "Lấy sản phẩm đã mua gần đây",
        {"productId": _string("ID sản phẩm (optional)"), "limit": LIMIT_PRODUCTS},
    ),
    # Flash deals & promotions
    _declare("get_flash_deals", "Lấy deal flash đang diễn ra", {"limit": _number("Số lượng deal")}),
    _declare("get_limited_time_offers", "Lấy ưu đãi có thời hạn", {"limit": _number("Số lượng ưu đãi")}),
    _declare("get_trending_now", "Lấy sản phẩm đang trending hiện tại", {"limit": LIMIT_PRODUCTS}),
    # Marketing
    _declare(
        "generate_personalized_discount",
        "Tạo mã giảm giá cá nhân hóa",
        {
            "targetAmount": _number("Số tiền mục tiêu"),
            "trigger": _string("Lý do tặng mã: first_purchase/cart_abandonment/vip/loyalty"),
        },
    ),
    _declare(
        "calculate_bundle_savings",
        "Tính tiết kiệm khi mua combo",
        {"productIds": _string_list("Danh sách ID sản phẩm")},
        ["productIds"],
    ),
    _declare("get_abandoned_cart", "Lấy giỏ hàng bị bỏ rơi"),
    _declare(
        "send_cart_recovery_incentive",
        "Gửi ưu đãi khôi phục giỏ hàng",
        {
            "discountPercent": _number("Phần trăm giảm giá"),
            "incentiveType": _string("Loại ưu đãi: free_shipping/discount/gift"),
        },
    ),
    _declare(
        "get_upgrade_suggestions",
        "Gợi ý nâng cấp sản phẩm",
        {"currentProductId": _string("ID sản phẩm hiện tại")},
        ["currentProductId"],
    ),
    _declare(
        "get_frequently_bought_together",
        "Lấy sản phẩm thường được mua cùng",
        {"productIds": _string_list("Danh sách ID sản phẩm")},
        ["productIds"],
    ),
]

CATALOG: Mapping[str, Dict[str, Any]] = MappingProxyType({entry["name"]: entry for entry in FUNCTION_DECLARATIONS})


def get_declaration(name: str) -> Optional[Dict[str, Any]]:
    return CATALOG.get(name)


def function_names() -> List[str]:
    return [entry["name"] for entry in FUNCTION_DECLARATIONS]
