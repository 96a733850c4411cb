from __future__ import annotations

import json
import re
from typing import Any

from ..errors import AuthenticationError, MalformedPayloadError
from ..models import (
    CategoryFilter,
    CategoryFilterOption,
    CategoryFilterType,
    CategorySubcategory,
    MarketOffer,
    Message,
    Offer,
    OfferCustomField,
    OfferEditParams,
    OfferFieldOption,
    OfferFieldType,
    OfferFullParams,
    Order,
    OrderStatus,
    Review,
    SubcategoryType,
    chat_id_for_user,
)
from .html import Element, parse_html


_RE_SUBCATEGORY = re.compile(r"/(?:chips|lots|market|goods|game|category|subcategory)/(\d+)/?")
_RE_AMOUNT = re.compile(r"(\d+)\s*(шт|pcs|pieces|ед)\.?", re.IGNORECASE)
_RE_USER_ID = re.compile(r"/users/(\d+)/?")
_RE_ORDER_CATEGORY = re.compile(r"/(?:chips|lots)/(\d+)/?")
_RE_COUNTER_ITEM = re.compile(r"/(lots|chips)/(\d+)/?")
_RE_ORDER_SUM = re.compile(r"([\d.,]+)\s*([A-Za-zА-Яа-я₽$€£¥₴]+)")
_RE_CHAT_LINK = re.compile(r"/chat/(\d+)/")
_RE_OFFER_ID = re.compile(r"[?&]id=(\d+)")
_RE_RATING = re.compile(r"rating-(\d+(?:\.\d+)?)")
_RE_NUMBER = re.compile(r"\d+")

# 订单页 param-item 标题（ru / uk / en）
_PAID_PRODUCT = ("Оплаченный товар", "Оплаченные товары", "Оплачений товар", "Оплачені товари", "Paid product", "Paid products")
_SHORT_DESCRIPTION = ("Краткое описание", "Короткий опис", "Short description")
_FULL_DESCRIPTION = ("Полное описание", "Повний опис", "Full description")
_CATEGORY = ("Категория", "Категорія", "Category", "Валюта", "Currency")
_AMOUNT = ("Кол-во", "Кількість", "Amount")
_REFUND = ("Возврат", "Повернення", "Refund")
_CLOSED = ("Закрыт", "Закрито", "Closed")


def _int_or(value: str | None, default: int) -> int:
    try:
        return int(value) if value not in (None, "") else default
    except ValueError:
        return default


def _float_or(value: str | None, default: float) -> float:
    try:
        return float(value) if value not in (None, "") else default
    except ValueError:
        return default


def parse_app_data(markup: str) -> dict[str, Any]:
    """
    解析首页 <body data-app-data='{...}'> 与登录用户名。

    返回 {"user_id", "csrf_token", "username", "locale"}；未登录时抛 AuthenticationError。
    """
    doc = parse_html(markup)
    body = doc.find("body")
    app_attr = body.get("data-app-data") if body is not None else None

    username_el = doc.find("div", class_="user-link-name")
    if username_el is None:
        raise AuthenticationError("golden key rejected: no logged-in user on home page")
    if not app_attr:
        raise MalformedPayloadError("home page has no data-app-data")

    try:
        app = json.loads(app_attr)
    except ValueError as e:
        raise MalformedPayloadError(f"invalid data-app-data JSON: {e}") from e
    if not isinstance(app, dict):
        raise MalformedPayloadError("data-app-data expected object")

    user_id = app.get("userId")
    csrf = app.get("csrf-token")
    if not isinstance(user_id, int) or isinstance(user_id, bool):
        raise MalformedPayloadError("data-app-data missing userId")
    if not isinstance(csrf, str):
        raise MalformedPayloadError("data-app-data missing csrf-token")
    locale = app.get("locale")
    return {
        "user_id": user_id,
        "csrf_token": csrf,
        "username": username_el.text().strip(),
        "locale": locale if isinstance(locale, str) else None,
    }


def parse_chat_bookmarks(markup: str) -> list[dict[str, Any]]:
    doc = parse_html(markup)
    out: list[dict[str, Any]] = []
    for el in doc.find_all("a", class_="contact-item"):
        msg_el = el.find("div", class_="contact-item-message")
        name_el = el.find("div", class_="media-user-name")
        out.append(
            {
                "id": _int_or(el.get("data-id"), 0),
                "name": name_el.text().strip() if name_el is not None else "",
                "last_message_text": msg_el.text() if msg_el is not None else None,
                "node_msg_id": _int_or(el.get("data-node-msg"), 0),
                "user_msg_id": _int_or(el.get("data-user-msg"), 0),
                "unread": el.has_class("unread"),
            }
        )
    return out


def _order_status(item: Element) -> OrderStatus:
    if item.has_class("warning"):
        return OrderStatus.REFUNDED
    if item.has_class("info"):
        return OrderStatus.PAID
    return OrderStatus.CLOSED


def parse_orders_list(markup: str, my_id: int) -> list[dict[str, Any]]:
    """
    解析 /orders/trade 页面。页面中没有登录用户块时视为会话失效。
    """
    doc = parse_html(markup)
    if doc.find("div", class_="user-link-name") is None:
        raise AuthenticationError("orders page rendered without a logged-in user")

    out: list[dict[str, Any]] = []
    for item in doc.find_all("a", class_="tc-item"):
        order_div = item.find("div", class_="tc-order")
        if order_div is None:
            continue
        order_id = order_div.text().strip().lstrip("#")

        desc_el = item.find("div", class_="order-desc")
        desc_inner = desc_el.find("div") if desc_el is not None else None
        description = desc_inner.text().strip() if desc_inner is not None else ""

        price_el = item.find("div", class_="tc-price")
        price_text = (price_el.text() if price_el is not None else "").replace("\u00a0", " ").strip()
        price, currency = 0.0, ""
        if " " in price_text:
            value, currency = price_text.rsplit(" ", 1)
            price = _float_or(value.replace(" ", ""), 0.0)

        buyer_username, buyer_id = "", 0
        buyer_name = item.find("div", class_="media-user-name")
        buyer_span = buyer_name.find("span") if buyer_name is not None else None
        if buyer_span is not None:
            buyer_username = buyer_span.text().strip()
            m = _RE_USER_ID.search(buyer_span.get("data-href") or "")
            if m:
                buyer_id = int(m.group(1))

        subcategory_name, subcategory_id = "", None
        muted = item.find("div", class_="text-muted")
        if muted is not None:
            subcategory_name = muted.text().strip()
            link = muted.find("a")
            m = _RE_SUBCATEGORY.search(link.get("href") or "") if link is not None else None
            if m:
                subcategory_id = int(m.group(1))

        date_el = item.find("div", class_="tc-date-time")
        m_amount = _RE_AMOUNT.search(description)

        out.append(
            {
                "id": order_id,
                "description": description,
                "price": price,
                "currency": currency,
                "buyer_username": buyer_username,
                "buyer_id": buyer_id,
                "chat_id": chat_id_for_user(my_id, buyer_id),
                "status": _order_status(item).value,
                "date_text": date_el.text().strip() if date_el is not None else "",
                "subcategory_id": subcategory_id,
                "subcategory_name": subcategory_name,
                "amount": int(m_amount.group(1)) if m_amount else 1,
            }
        )
    return out


def parse_my_offers(markup: str, node_id: int) -> list[Offer]:
    doc = parse_html(markup)
    offers: list[Offer] = []
    for item in doc.find_all("a", class_="tc-item", attrs={"data-offer": None}):
        offer_id = _int_or(item.get("data-offer"), 0)
        if offer_id == 0:
            continue
        desc_el = item.find("div", class_="tc-desc-text")
        price_el = item.find("div", class_="tc-price")
        unit_el = price_el.find("span", class_="unit") if price_el is not None else None
        offers.append(
            Offer(
                id=offer_id,
                node_id=node_id,
                description=desc_el.text().strip() if desc_el is not None else "",
                price=_float_or(price_el.get("data-s") if price_el is not None else None, 0.0),
                currency=unit_el.text().strip() if unit_el is not None else "₽",
                active=not item.has_class("warning"),
            )
        )
    return offers


def _input_value(doc: Element, name: str) -> str:
    el = doc.find("input", attrs={"name": name})
    return (el.get("value") or "") if el is not None else ""


def _textarea_value(doc: Element, name: str) -> str:
    el = doc.find("textarea", attrs={"name": name})
    return el.text() if el is not None else ""


def _checkbox_value(doc: Element, name: str) -> bool:
    el = doc.find("input", attrs={"name": name, "type": "checkbox"})
    return el is not None and "checked" in el.attrs


def _select_value(doc: Element, name: str) -> str:
    select = doc.find("select", attrs={"name": name})
    if select is None:
        return ""
    opt = select.find("option", attrs={"selected": None})
    return (opt.get("value") or "") if opt is not None else ""


def _field_value(doc: Element, name: str) -> str:
    return _input_value(doc, name) or _select_value(doc, name)


def _edit_params(doc: Element) -> OfferEditParams:
    return OfferEditParams(
        quantity=_field_value(doc, "fields[quantity]"),
        quantity2=_field_value(doc, "fields[quantity2]"),
        method=_field_value(doc, "fields[method]"),
        offer_type=_field_value(doc, "fields[type]"),
        server_id=_field_value(doc, "server_id"),
        desc_ru=_textarea_value(doc, "fields[desc][ru]"),
        desc_en=_textarea_value(doc, "fields[desc][en]"),
        payment_msg_ru=_textarea_value(doc, "fields[payment_msg][ru]"),
        payment_msg_en=_textarea_value(doc, "fields[payment_msg][en]"),
        summary_ru=_input_value(doc, "fields[summary][ru]"),
        summary_en=_input_value(doc, "fields[summary][en]"),
        game=_field_value(doc, "fields[game]"),
        images=_input_value(doc, "fields[images]"),
        price=_input_value(doc, "price"),
        deactivate_after_sale=_checkbox_value(doc, "deactivate_after_sale"),
        active=_checkbox_value(doc, "active"),
        location=_input_value(doc, "location"),
    )


def parse_offer_edit_params(markup: str) -> OfferEditParams:
    return _edit_params(parse_html(markup))


_SKIPPED_CUSTOM = ("[desc]", "[payment_msg]", "[images]")


def _custom_field(group: Element, label: str) -> OfferCustomField | None:
    inp = group.find("input")
    if inp is not None:
        name = inp.get("name") or ""
        if not name.startswith("fields[") or any(s in name for s in _SKIPPED_CUSTOM):
            return None
        input_type = inp.get("type") or "text"
        if input_type == "checkbox":
            return OfferCustomField(
                name=name,
                label=label,
                field_type=OfferFieldType.CHECKBOX,
                value="true" if "checked" in inp.attrs else "false",
            )
        field_type = OfferFieldType.HIDDEN if input_type == "hidden" else OfferFieldType.TEXT
        return OfferCustomField(name=name, label=label, field_type=field_type, value=inp.get("value") or "")

    textarea = group.find("textarea")
    if textarea is not None:
        name = textarea.get("name") or ""
        if not name.startswith("fields[") or any(s in name for s in _SKIPPED_CUSTOM):
            return None
        return OfferCustomField(name=name, label=label, field_type=OfferFieldType.TEXTAREA, value=textarea.text())

    select = group.find("select")
    if select is not None:
        name = select.get("name") or ""
        if not name.startswith("fields["):
            return None
        options = tuple(
            OfferFieldOption(value=opt.get("value") or "", label=opt.text().strip(), selected="selected" in opt.attrs)
            for opt in select.find_all("option")
        )
        selected = next((o.value for o in options if o.selected), "")
        return OfferCustomField(
            name=name, label=label, field_type=OfferFieldType.SELECT, value=selected, options=options
        )
    return None


def parse_offer_full_params(markup: str, offer_id: int, node_id: int) -> OfferFullParams:
    doc = parse_html(markup)
    custom: list[OfferCustomField] = []
    for group in doc.find_all("div", class_="form-group"):
        label_el = group.find("label")
        f = _custom_field(group, label_el.text().strip() if label_el is not None else "")
        if f is not None:
            custom.append(f)
    return OfferFullParams(offer_id=offer_id, node_id=node_id, params=_edit_params(doc), custom_fields=tuple(custom))


def runner_objects(payload: Any) -> list[dict[str, Any]]:
    """runner 响应中的 objects 列表；结构不符时抛 MalformedPayloadError。"""
    if not isinstance(payload, dict):
        raise MalformedPayloadError(f"runner response expected object, got {type(payload).__name__}")
    objects = payload.get("objects", [])
    if not isinstance(objects, list):
        raise MalformedPayloadError("runner response objects expected list")
    return [o for o in objects if isinstance(o, dict)]


def parse_message_html(markup: str) -> tuple[str | None, str | None]:
    """
    单条聊天消息的 html -> (text, image_url)。

    优先 div.chat-msg-text，其次系统提示 div[role=alert]，最后图片链接 a.chat-img-link。
    """
    doc = parse_html(markup)
    text_el = doc.find("div", class_="chat-msg-text") or doc.find("div", attrs={"role": "alert"})
    if text_el is not None:
        return text_el.text(), None
    img = doc.find("a", class_="chat-img-link")
    if img is not None:
        return None, img.get("href")
    return None, None


def parse_chat_node_messages(data: Any, chat_id: str, chat_name: str | None) -> list[Message]:
    """runner 中 chat_node 对象的 data -> 消息列表；缺字段的消息按 0 / 空处理。"""
    if not isinstance(data, dict):
        return []
    raw = data.get("messages")
    if not isinstance(raw, list):
        return []
    out: list[Message] = []
    for m in raw:
        if not isinstance(m, dict):
            continue
        html = m.get("html")
        text, image_url = parse_message_html(html if isinstance(html, str) else "")
        out.append(
            Message(
                id=_int_or(str(m.get("id") or ""), 0),
                chat_id=chat_id,
                chat_name=chat_name,
                text=text,
                author_id=_int_or(str(m.get("author") or ""), 0),
                image_url=image_url,
            )
        )
    return out


def _param_title(item: Element) -> str | None:
    header = item.find("h5")
    return header.text().strip() if header is not None else None


def _first_div_text(item: Element) -> str | None:
    el = item.find("div")
    return el.text().strip() if el is not None else None


def _order_secrets(doc: Element) -> list[str]:
    secrets: list[str] = []
    for item in doc.find_all("div", class_="param-item"):
        if _param_title(item) not in _PAID_PRODUCT:
            continue
        for span in item.find_all("span", class_="secret-placeholder"):
            text = span.text().strip()
            if text:
                secrets.append(text)
    return secrets


def parse_order_secrets(markup: str) -> list[str]:
    return _order_secrets(parse_html(markup))


def _order_page_status(doc: Element) -> OrderStatus:
    warn = doc.find("span", class_="text-warning")
    if warn is not None and warn.text().strip() in _REFUND:
        return OrderStatus.REFUNDED
    success = doc.find("span", class_="text-success")
    if success is not None and success.text().strip() in _CLOSED:
        return OrderStatus.CLOSED
    return OrderStatus.PAID


def parse_order_page(markup: str, order_id: str) -> Order:
    """
    解析订单详情页 /orders/{id}/。

    param-item 按标题（ru / uk / en）归类：描述、分类、数量；已付商品进入 order_secrets，
    其余非空项进入 lot_params。页面中没有登录用户块时视为会话失效。
    """
    doc = parse_html(markup)
    if doc.find("div", class_="user-link-name") is None:
        raise AuthenticationError("order page rendered without a logged-in user")

    short_description: str | None = None
    full_description: str | None = None
    subcategory_id: int | None = None
    subcategory_name = ""
    amount = 0
    lot_params: list[tuple[str, str]] = []

    for item in doc.find_all("div", class_="param-item"):
        title = _param_title(item)
        if title is None:
            continue
        if title in _SHORT_DESCRIPTION:
            short_description = _first_div_text(item)
        elif title in _FULL_DESCRIPTION:
            full_description = _first_div_text(item)
        elif title in _CATEGORY:
            link = item.find("a")
            m = _RE_ORDER_CATEGORY.search(link.get("href") or "") if link is not None else None
            if m:
                subcategory_id = int(m.group(1))
                subcategory_name = link.text().strip()
        elif title in _AMOUNT:
            amount = _int_or(_first_div_text(item), amount)
        elif title not in _PAID_PRODUCT:
            content = _first_div_text(item)
            if content:
                lot_params.append((title, content))

    buyer_id, buyer_username = 0, ""
    buyer = doc.find(class_="order-buyer")
    buyer_link = buyer.find("a") if buyer is not None else None
    if buyer_link is not None:
        buyer_username = buyer_link.text().strip()
        m = _RE_USER_ID.search(buyer_link.get("href") or "")
        if m:
            buyer_id = int(m.group(1))

    price, currency = 0.0, "RUB"
    sum_el = doc.find(class_="order-sum")
    m = _RE_ORDER_SUM.search(sum_el.text()) if sum_el is not None else None
    if m:
        price = _float_or(m.group(1).replace(",", "."), 0.0)
        currency = m.group(2)

    chat_id = "0"
    for link in doc.find_all("a", attrs={"href": None}):
        m = _RE_CHAT_LINK.search(link.get("href") or "")
        if m:
            chat_id = m.group(1)
            break

    review: Review | None = None
    review_el = doc.find(class_="review-item")
    if review_el is not None:
        stars = 0
        for mini in review_el.find_all(class_="rating-mini"):
            stars += sum(1 for el in mini.find_all(class_="fa-star") if el.has_class("fas"))
        text_el = review_el.find(class_="review-text")
        review = Review(stars=stars, text=text_el.text().strip() if text_el is not None else None)

    return Order(
        id=order_id,
        status=_order_page_status(doc),
        short_description=short_description,
        full_description=full_description,
        lot_params=tuple(lot_params),
        subcategory_id=subcategory_id,
        subcategory_name=subcategory_name,
        amount=amount,
        price=price,
        currency=currency,
        buyer_id=buyer_id,
        buyer_username=buyer_username,
        chat_id=chat_id,
        order_secrets=tuple(_order_secrets(doc)),
        review=review,
    )


def _seller_reviews(reviews: Element) -> int:
    count_el = reviews.find("span", class_="rating-mini-count")
    if count_el is not None:
        return _int_or(count_el.text().strip(), 0)
    m = _RE_NUMBER.search(reviews.text())
    return int(m.group(0)) if m else 0


def _seller_rating(reviews: Element) -> float | None:
    stars = reviews.find("div", class_="rating-stars")
    if stars is None:
        return None
    for cls in stars.classes:
        m = _RE_RATING.fullmatch(cls)
        if m:
            return float(m.group(1))
    return None


def parse_market_offers(markup: str, node_id: int) -> list[MarketOffer]:
    """公开商品列表 /lots/{node}/；href 中没有 offer id 的条目跳过。"""
    doc = parse_html(markup)
    offers: list[MarketOffer] = []
    for item in doc.find_all("a", class_="tc-item"):
        m = _RE_OFFER_ID.search(item.get("href") or "")
        offer_id = int(m.group(1)) if m else 0
        if offer_id == 0:
            continue

        desc_el = item.find("div", class_="tc-desc-text")
        price_el = item.find("div", class_="tc-price")
        unit_el = price_el.find("span", class_="unit") if price_el is not None else None

        seller_el = item.find("span", class_="pseudo-a", attrs={"data-href": None})
        seller_id = 0
        if seller_el is not None:
            m_user = _RE_USER_ID.search(seller_el.get("data-href") or "")
            seller_id = int(m_user.group(1)) if m_user else 0

        reviews = item.find("div", class_="media-user-reviews")
        offers.append(
            MarketOffer(
                id=offer_id,
                node_id=node_id,
                description=desc_el.text().strip() if desc_el is not None else "",
                price=_float_or(price_el.get("data-s") if price_el is not None else None, 0.0),
                currency=unit_el.text().strip() if unit_el is not None else "₽",
                seller_id=seller_id,
                seller_name=seller_el.text().strip() if seller_el is not None else "",
                seller_online=item.get("data-online") == "1",
                seller_rating=_seller_rating(reviews) if reviews is not None else None,
                seller_reviews=_seller_reviews(reviews) if reviews is not None else 0,
                is_promo=item.has_class("offer-promo"),
            )
        )
    return offers


def parse_category_subcategories(markup: str) -> list[CategorySubcategory]:
    doc = parse_html(markup)
    container = next(
        (el for el in doc.find_all("div", class_="counter-list") if el.has_class("counter-list-pills")),
        None,
    )
    if container is None:
        return []

    out: list[CategorySubcategory] = []
    for item in container.find_all("a", class_="counter-item"):
        m = _RE_COUNTER_ITEM.search(item.get("href") or "")
        if not m:
            continue
        name_el = item.find("div", class_="counter-param")
        count_el = item.find("div", class_="counter-value")
        out.append(
            CategorySubcategory(
                id=int(m.group(2)),
                name=name_el.text().strip() if name_el is not None else "",
                offer_count=_int_or(count_el.text().strip().replace(" ", "") if count_el is not None else None, 0),
                subcategory_type=SubcategoryType(m.group(1)),
                is_active=item.has_class("active"),
            )
        )
    return out


def _filter_options(elements: list[Element]) -> tuple[CategoryFilterOption, ...]:
    return tuple(
        CategoryFilterOption(value=el.get("value") or "", label=el.text().strip())
        for el in elements
        if el.get("value")
    )


def parse_category_filters(markup: str) -> list[CategoryFilter]:
    """
    解析 div.showcase-filters：lot-field（select / radio / range）后接 checkbox 过滤项。

    没有可选项的 select / radio 不输出。
    """
    doc = parse_html(markup)
    container = doc.find("div", class_="showcase-filters")
    if container is None:
        return []

    filters: list[CategoryFilter] = []
    for field_el in container.find_all("div", class_="lot-field", attrs={"data-id": None}):
        field_id = field_el.get("data-id") or ""
        select = field_el.find("select", class_="lot-field-input")
        radio_box = field_el.find("div", class_="lot-field-radio-box")
        if select is not None:
            name = select.get("name")
            options = _filter_options(select.find_all("option"))
            if options:
                filters.append(
                    CategoryFilter(
                        id=field_id,
                        name=name.removeprefix("f-") if name else field_id,
                        filter_type=CategoryFilterType.SELECT,
                        options=options,
                    )
                )
        elif radio_box is not None:
            options = _filter_options(radio_box.find_all("button"))
            if options:
                filters.append(
                    CategoryFilter(id=field_id, name=field_id, filter_type=CategoryFilterType.RADIO_BOX, options=options)
                )
        elif field_el.find("div", class_="lot-field-range-box") is not None:
            label = field_el.find("label", class_="control-label")
            filters.append(
                CategoryFilter(
                    id=field_id,
                    name=label.text().strip() if label is not None else field_id,
                    filter_type=CategoryFilterType.RANGE,
                )
            )

    for label in container.find_all("label", class_="showcase-filter-label"):
        checkbox = label.find("input", class_="showcase-filter-input", attrs={"type": "checkbox"})
        if checkbox is not None:
            filters.append(
                CategoryFilter(
                    id=checkbox.get("name") or "unknown",
                    name=label.text().strip(),
                    filter_type=CategoryFilterType.CHECKBOX,
                )
            )
    return filters
