import pytest

from fpt.errors import AuthenticationError, MalformedPayloadError
from fpt.gateway.html import parse_html
from fpt.gateway.parsing import (
    parse_app_data,
    parse_category_filters,
    parse_category_subcategories,
    parse_chat_bookmarks,
    parse_chat_node_messages,
    parse_market_offers,
    parse_message_html,
    parse_my_offers,
    parse_offer_edit_params,
    parse_offer_full_params,
    parse_order_page,
    parse_order_secrets,
    parse_orders_list,
    runner_objects,
)
from fpt.models import CategoryFilterType, OfferFieldType, OrderStatus, SubcategoryType


HOME = """
<html><body data-app-data='{"userId": 42, "csrf-token": "tok", "locale": "en"}'>
<div class="user-link-name">seller42</div>
</body></html>
"""

BOOKMARKS = """
<div class="contact-list">
  <a class="contact-item unread" data-id="100" data-node-msg="555" data-user-msg="554">
    <div class="media-user-name">alice</div>
    <div class="contact-item-message">hello<br>there</div>
  </a>
  <a class="contact-item" data-id="101" data-node-msg="12" data-user-msg="0">
    <div class="media-user-name">bob</div>
  </a>
</div>
"""

ORDERS = """
<html><body>
<div class="user-link-name">seller42</div>
<a class="tc-item info" href="/orders/ABC123/">
  <div class="tc-date-time">today, 12:00</div>
  <div class="tc-order">#ABC123</div>
  <div class="order-desc"><div>Gold, 100 pcs</div>
    <div class="text-muted"><a href="/chips/7/">Gold, EU</a></div>
  </div>
  <div class="media-user-name"><span data-href="https://funpay.com/users/77/">buyer77</span></div>
  <div class="tc-price">1&nbsp;250.50 ₽</div>
</a>
<a class="tc-item warning" href="/orders/DEF456/">
  <div class="tc-order">#DEF456</div>
  <div class="order-desc"><div>Account</div></div>
  <div class="tc-price">10 $</div>
</a>
<a class="tc-item" href="/orders/GHI789/">
  <div class="tc-order">#GHI789</div>
</a>
</body></html>
"""

OFFER_EDIT = """
<form>
  <input type="hidden" name="csrf_token" value="tok">
  <div class="form-group"><label>Quantity</label><input name="fields[quantity]" value="10"></div>
  <div class="form-group"><label>Server</label>
    <select name="fields[server]"><option value="1">EU</option><option value="2" selected>US</option></select>
  </div>
  <div class="form-group"><label>Description</label><textarea name="fields[desc][ru]">Описание</textarea></div>
  <div class="form-group"><label>Auto</label><input type="checkbox" name="fields[auto]" checked></div>
  <input name="price" value="99.5">
  <input type="checkbox" name="active" checked>
  <input type="checkbox" name="deactivate_after_sale">
</form>
"""

LOTS = """
<div>
  <a class="tc-item" data-offer="9001"><div class="tc-desc-text">Gold 1k</div>
    <div class="tc-price" data-s="12.5">12.5 <span class="unit">₽</span></div></a>
  <a class="tc-item warning" data-offer="9002"><div class="tc-desc-text">Gold 5k</div>
    <div class="tc-price" data-s="60"></div></a>
  <a class="tc-item"><div class="tc-desc-text">header row</div></a>
</div>
"""


def test_parse_app_data() -> None:
    app = parse_app_data(HOME)
    assert app == {"user_id": 42, "csrf_token": "tok", "username": "seller42", "locale": "en"}


def test_parse_app_data_logged_out_is_authentication_error() -> None:
    with pytest.raises(AuthenticationError):
        parse_app_data("<html><body data-app-data='{}'></body></html>")


def test_parse_app_data_without_app_attr_is_malformed() -> None:
    with pytest.raises(MalformedPayloadError):
        parse_app_data('<body><div class="user-link-name">x</div></body>')


def test_parse_chat_bookmarks() -> None:
    chats = parse_chat_bookmarks(BOOKMARKS)
    assert [c["id"] for c in chats] == [100, 101]
    assert chats[0]["node_msg_id"] == 555
    assert chats[0]["unread"] is True
    assert chats[0]["last_message_text"] == "hello\nthere"
    assert chats[1]["last_message_text"] is None
    assert chats[1]["unread"] is False


def test_parse_orders_list() -> None:
    orders = parse_orders_list(ORDERS, my_id=42)
    assert [o["id"] for o in orders] == ["ABC123", "DEF456", "GHI789"]
    first = orders[0]
    assert first["status"] == "paid"
    assert first["price"] == 1250.5
    assert first["currency"] == "₽"
    assert first["buyer_username"] == "buyer77"
    assert first["buyer_id"] == 77
    assert first["chat_id"] == "users-42-77"
    assert first["subcategory_id"] == 7
    assert first["amount"] == 100
    assert orders[1]["status"] == "refunded"
    assert orders[2]["status"] == "closed"


def test_parse_orders_list_logged_out() -> None:
    with pytest.raises(AuthenticationError):
        parse_orders_list("<html><body>login</body></html>", my_id=1)


def test_parse_offer_params() -> None:
    params = parse_offer_edit_params(OFFER_EDIT)
    assert params.quantity == "10"
    assert params.price == "99.5"
    assert params.desc_ru == "Описание"
    assert params.active is True
    assert params.deactivate_after_sale is False

    full = parse_offer_full_params(OFFER_EDIT, offer_id=9001, node_id=7)
    fields = {f.name: f for f in full.custom_fields}
    assert set(fields) == {"fields[quantity]", "fields[server]", "fields[auto]"}
    assert fields["fields[server]"].field_type is OfferFieldType.SELECT
    assert fields["fields[server]"].value == "2"
    assert fields["fields[auto]"].value == "true"
    assert fields["fields[quantity]"].label == "Quantity"


def test_parse_my_offers() -> None:
    offers = parse_my_offers(LOTS, node_id=7)
    assert [o.id for o in offers] == [9001, 9002]
    assert offers[0].price == 12.5
    assert offers[0].currency == "₽"
    assert offers[0].active
    assert not offers[1].active


def test_runner_objects() -> None:
    assert runner_objects({"objects": [{"type": "a"}, "junk"]}) == [{"type": "a"}]
    with pytest.raises(MalformedPayloadError):
        runner_objects([1, 2])


def test_html_tree_tolerates_unclosed_tags() -> None:
    doc = parse_html("<div class='a b'><p>one<p>two</div><span>tail</span>")
    div = doc.find("div", class_="b")
    assert div is not None
    assert div.text() == "onetwo"
    assert doc.find("span").text() == "tail"


ORDER_PAGE = """
<html><body>
<div class="user-link-name">seller42</div>
<span class="text-success">Closed</span>
<div class="param-item"><h5>Short description</h5><div>Gold, 5 pcs</div></div>
<div class="param-item"><h5>Full description</h5><div>Delivered by mail</div></div>
<div class="param-item"><h5>Category</h5><div><a href="https://funpay.com/chips/17/">Gold WoW</a></div></div>
<div class="param-item"><h5>Amount</h5><div>5</div></div>
<div class="param-item"><h5>Server</h5><div>EU</div></div>
<div class="param-item"><h5>Paid product</h5><div>
  <span class="secret-placeholder">CODE-1</span><span class="secret-placeholder"> </span>
  <span class="secret-placeholder">CODE-2</span>
</div></div>
<div class="order-buyer"><a href="https://funpay.com/users/77/">buyer77</a></div>
<div class="order-sum">250,50 ₽</div>
<a href="https://funpay.com/chat/9001/">chat</a>
<div class="review-item">
  <div class="rating-mini"><i class="fas fa-star"></i><i class="fas fa-star"></i><i class="far fa-star"></i></div>
  <div class="review-text"> fast </div>
</div>
</body></html>
"""

MARKET = """
<a class="tc-item offer-promo" href="https://funpay.com/lots/offer?id=501" data-online="1">
  <div class="tc-desc-text"> Boost to 60 </div>
  <div class="media-user-reviews"><div class="rating-stars rating-4.5"></div><span class="rating-mini-count">128</span></div>
  <span class="pseudo-a" data-href="https://funpay.com/users/9/">pro</span>
  <div class="tc-price" data-s="99.5"><span class="unit">$</span></div>
</a>
<a class="tc-item" href="https://funpay.com/lots/offer?id=502">
  <div class="media-user-reviews">12 reviews</div>
  <div class="tc-price" data-s="10"></div>
</a>
<a class="tc-item" href="https://funpay.com/lots/offer">no id</a>
"""

CATEGORY = """
<div class="counter-list counter-list-pills">
  <a class="counter-item active" href="https://funpay.com/lots/210/">
    <div class="counter-param">Accounts</div><div class="counter-value">1 204</div>
  </a>
  <a class="counter-item" href="https://funpay.com/chips/17/"><div class="counter-param">Gold</div></a>
  <a class="counter-item" href="https://funpay.com/users/1/">skip</a>
</div>
<div class="showcase-filters">
  <div class="lot-field" data-id="server">
    <select class="lot-field-input" name="f-server"><option value="">Any</option><option value="1">EU</option></select>
  </div>
  <div class="lot-field" data-id="side">
    <div class="lot-field-radio-box"><button value="a">Alliance</button><button value="h">Horde</button></div>
  </div>
  <div class="lot-field" data-id="level">
    <label class="control-label">Level</label><div class="lot-field-range-box"></div>
  </div>
  <div class="lot-field" data-id="empty"><select class="lot-field-input" name="f-empty"><option value="">-</option></select></div>
  <label class="showcase-filter-label"><input type="checkbox" class="showcase-filter-input" name="online"> Online only</label>
</div>
"""


def test_parse_message_html_variants() -> None:
    assert parse_message_html('<div class="chat-msg-text">line1<br>line2</div>') == ("line1\nline2", None)
    assert parse_message_html('<div role="alert">The buyer paid</div>') == ("The buyer paid", None)
    assert parse_message_html('<a class="chat-img-link" href="https://i/x.png"></a>') == (None, "https://i/x.png")
    assert parse_message_html("<div></div>") == (None, None)


def test_parse_chat_node_messages() -> None:
    data = {
        "messages": [
            {"id": 11, "author": 77, "html": '<div class="chat-msg-text">hi</div>'},
            {"id": 12, "author": 42, "html": '<a class="chat-img-link" href="/img.png"></a>'},
            "junk",
        ]
    }
    messages = parse_chat_node_messages(data, "9", "alice")

    assert [(m.id, m.author_id, m.text, m.image_url) for m in messages] == [
        (11, 77, "hi", None),
        (12, 42, None, "/img.png"),
    ]
    assert all(m.chat_id == "9" and m.chat_name == "alice" for m in messages)
    assert parse_chat_node_messages(None, "9", None) == []
    assert parse_chat_node_messages({"messages": "x"}, "9", None) == []


def test_parse_order_page() -> None:
    order = parse_order_page(ORDER_PAGE, "ABC123")

    assert order.id == "ABC123"
    assert order.status is OrderStatus.CLOSED
    assert order.short_description == "Gold, 5 pcs"
    assert order.full_description == "Delivered by mail"
    assert (order.subcategory_id, order.subcategory_name) == (17, "Gold WoW")
    assert order.amount == 5
    assert order.lot_params == (("Server", "EU"),)
    assert order.order_secrets == ("CODE-1", "CODE-2")
    assert (order.buyer_id, order.buyer_username) == (77, "buyer77")
    assert order.price == 250.50
    assert order.currency == "₽"
    assert order.chat_id == "9001"
    assert order.review is not None
    assert order.review.stars == 2
    assert order.review.text == "fast"


def test_parse_order_page_refund_and_defaults() -> None:
    markup = '<div class="user-link-name">s</div><span class="text-warning">Refund</span>'
    order = parse_order_page(markup, "X")

    assert order.status is OrderStatus.REFUNDED
    assert (order.price, order.currency, order.chat_id, order.amount) == (0.0, "RUB", "0", 0)
    assert order.review is None


def test_parse_order_page_logged_out() -> None:
    with pytest.raises(AuthenticationError):
        parse_order_page("<html></html>", "X")


def test_parse_order_secrets() -> None:
    assert parse_order_secrets(ORDER_PAGE) == ["CODE-1", "CODE-2"]


def test_parse_market_offers() -> None:
    first, second = parse_market_offers(MARKET, 7)

    assert (first.id, first.node_id, first.description) == (501, 7, "Boost to 60")
    assert (first.price, first.currency) == (99.5, "$")
    assert (first.seller_id, first.seller_name, first.seller_online) == (9, "pro", True)
    assert (first.seller_rating, first.seller_reviews, first.is_promo) == (4.5, 128, True)
    assert (second.id, second.currency, second.seller_reviews, second.seller_rating) == (502, "₽", 12, None)
    assert not second.seller_online


def test_parse_category_subcategories() -> None:
    accounts, gold = parse_category_subcategories(CATEGORY)

    assert (accounts.id, accounts.name, accounts.offer_count, accounts.is_active) == (210, "Accounts", 1204, True)
    assert accounts.subcategory_type is SubcategoryType.LOTS
    assert (gold.id, gold.offer_count, gold.subcategory_type) == (17, 0, SubcategoryType.CHIPS)
    assert parse_category_subcategories("<div></div>") == []


def test_parse_category_filters() -> None:
    filters = parse_category_filters(CATEGORY)

    assert [(f.id, f.name, f.filter_type) for f in filters] == [
        ("server", "server", CategoryFilterType.SELECT),
        ("side", "side", CategoryFilterType.RADIO_BOX),
        ("level", "Level", CategoryFilterType.RANGE),
        ("online", "Online only", CategoryFilterType.CHECKBOX),
    ]
    assert [(o.value, o.label) for o in filters[0].options] == [("1", "EU")]
    assert [o.value for o in filters[1].options] == ["a", "h"]
