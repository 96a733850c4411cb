from __future__ import annotations

import json
import logging
import secrets
import string
import time
from typing import Any, Mapping

from ..errors import AccountNotInitiatedError, MalformedPayloadError
from ..http_utils import HttpClient, HttpResponse, encode_form, extract_cookie
from ..models import (
    CategoryFilter,
    CategorySubcategory,
    Credential,
    MarketOffer,
    Message,
    Offer,
    OfferEditParams,
    OfferFullParams,
    Order,
)
from .parsing import (
    parse_app_data,
    parse_category_filters,
    parse_category_subcategories,
    parse_chat_bookmarks,
    parse_chat_node_messages,
    parse_market_offers,
    parse_my_offers,
    parse_offer_full_params,
    parse_order_page,
    parse_order_secrets,
    parse_orders_list,
    runner_objects,
)
from .urls import UrlBuilder


logger = logging.getLogger(__name__)

_TAG_ALPHABET = string.digits + string.ascii_lowercase
_FORM_CONTENT_TYPE = "application/x-www-form-urlencoded; charset=UTF-8"


def random_tag() -> str:
    return "".join(secrets.choice(_TAG_ALPHABET) for _ in range(10))


def _require_user_id(credential: Credential) -> int:
    if credential.user_id is None:
        raise AccountNotInitiatedError()
    return credential.user_id


class HttpGateway:
    """
    基于 HttpClient 的网关实现。

    - 会话凭证只通过参数传入，实例本身无会话状态，可被多个会话共享
    - runner 请求每次使用新的随机 tag，迫使服务端返回完整数据（快照语义）
    """

    def __init__(self, http: HttpClient, urls: UrlBuilder | None = None) -> None:
        self._http = http
        self._urls = urls or UrlBuilder()

    @property
    def urls(self) -> UrlBuilder:
        return self._urls

    def _headers(self, credential: Credential, **extra: str) -> dict[str, str]:
        headers = {
            "Cookie": credential.cookie_header(),
            "User-Agent": credential.user_agent,
            "Accept": "*/*",
        }
        headers.update(extra)
        return headers

    def _get(self, credential: Credential, url: str) -> HttpResponse:
        return self._http.get(url, headers=self._headers(credential))

    def _post_runner(
        self,
        credential: Credential,
        objects: list[dict[str, Any]],
        request: dict[str, Any] | None = None,
        *,
        csrf_token: str | None = None,
    ) -> list[dict[str, Any]]:
        form = encode_form(
            [
                ("objects", json.dumps(objects, ensure_ascii=False, separators=(",", ":"))),
                ("request", json.dumps(request, ensure_ascii=False) if request is not None else "false"),
                ("csrf_token", csrf_token if csrf_token is not None else credential.csrf_token),
            ]
        )
        resp = self._http.post(
            self._urls.runner(),
            data=form,
            headers=self._headers(
                credential,
                **{
                    "Content-Type": _FORM_CONTENT_TYPE,
                    "X-Requested-With": "XMLHttpRequest",
                    "Origin": self._urls.base_url,
                    "Referer": f"{self._urls.base_url}/chat/",
                },
            ),
        )
        return runner_objects(resp.json())

    def authenticate(self, golden_key: str) -> Credential:
        """
        用 golden_key 打开首页，读取 userId / csrf-token / 用户名与 PHPSESSID。
        """
        unauthenticated = Credential(golden_key=golden_key, user_agent=self._http.user_agent)
        resp = self._get(unauthenticated, self._urls.home())
        app = parse_app_data(resp.text())
        return Credential(
            golden_key=golden_key,
            user_agent=self._http.user_agent,
            csrf_token=app["csrf_token"],
            phpsessid=extract_cookie(resp.set_cookies, "PHPSESSID"),
            user_id=app["user_id"],
            username=app["username"],
        )

    def fetch_chats(self, credential: Credential) -> list[dict[str, Any]]:
        user_id = _require_user_id(credential)
        objects = self._post_runner(
            credential,
            [{"type": "chat_bookmarks", "id": user_id, "tag": random_tag(), "data": False}],
        )
        for obj in objects:
            if obj.get("type") != "chat_bookmarks":
                continue
            data = obj.get("data")
            if not isinstance(data, dict):
                raise MalformedPayloadError("chat_bookmarks object has no data")
            html = data.get("html")
            if not isinstance(html, str):
                raise MalformedPayloadError("chat_bookmarks data has no html")
            return parse_chat_bookmarks(html)
        raise MalformedPayloadError("runner response has no chat_bookmarks object")

    def fetch_orders(self, credential: Credential) -> dict[str, Any]:
        user_id = _require_user_id(credential)
        objects = self._post_runner(
            credential,
            [{"type": "orders_counters", "id": user_id, "tag": random_tag(), "data": False}],
        )
        counters: dict[str, Any] | None = None
        for obj in objects:
            if obj.get("type") == "orders_counters" and isinstance(obj.get("data"), dict):
                data = obj["data"]
                counters = {"buyer": data.get("buyer", 0), "seller": data.get("seller", 0)}
                break

        resp = self._get(credential, self._urls.orders_trade())
        orders = parse_orders_list(resp.text(), user_id)
        return {"counters": counters, "orders": orders}

    def _chat_nodes(self, credential: Credential, chat_ids: list[str]) -> dict[str, Any]:
        objects = self._post_runner(
            credential,
            [
                {"type": "chat_node", "id": chat_id, "tag": "00000000", "data": {"node": chat_id, "last_message": -1, "content": ""}}
                for chat_id in chat_ids
            ],
        )
        return {str(obj.get("id")): obj.get("data") for obj in objects if obj.get("type") == "chat_node"}

    def fetch_chat_histories(self, credential: Credential, chats: Mapping[int, str | None]) -> dict[int, list[Message]]:
        """
        一次 runner 请求拉取多个聊天的最近消息；chats 为 chat_id -> 聊天名。

        响应中缺失的聊天不出现在结果里。
        """
        if not chats:
            return {}
        nodes = self._chat_nodes(credential, [str(chat_id) for chat_id in chats])
        out: dict[int, list[Message]] = {}
        for chat_id, name in chats.items():
            if str(chat_id) in nodes:
                out[chat_id] = parse_chat_node_messages(nodes[str(chat_id)], str(chat_id), name)
        logger.debug("chat histories fetched: requested=%d received=%d", len(chats), len(out))
        return out

    def get_chat_messages(self, credential: Credential, chat_id: str) -> list[Message]:
        nodes = self._chat_nodes(credential, [chat_id])
        return parse_chat_node_messages(nodes.get(chat_id), chat_id, None)

    def send_chat_message(self, credential: Credential, chat_id: str, text: str) -> None:
        csrf_token = credential.csrf_token
        if not credential.phpsessid:
            # 没有 PHPSESSID 时先打开聊天页面换取会话与 csrf
            resp = self._get(credential, self._urls.chat_page(chat_id))
            try:
                csrf_token = parse_app_data(resp.text())["csrf_token"]
            except MalformedPayloadError:
                logger.debug("chat page has no app data; using login csrf: chat_id=%s", chat_id)
            phpsessid = extract_cookie(resp.set_cookies, "PHPSESSID")
            if phpsessid:
                credential = Credential(
                    golden_key=credential.golden_key,
                    user_agent=credential.user_agent,
                    csrf_token=csrf_token,
                    phpsessid=phpsessid,
                    user_id=credential.user_id,
                    username=credential.username,
                )

        node = {"node": chat_id, "last_message": -1, "content": ""}
        self._post_runner(
            credential,
            [{"type": "chat_node", "id": chat_id, "tag": "00000000", "data": node}],
            {"action": "chat_message", "data": {**node, "content": text}},
            csrf_token=csrf_token,
        )
        logger.info("chat message sent: chat_id=%s length=%d", chat_id, len(text))

    def get_offer_params(self, credential: Credential, offer_id: int, node_id: int) -> OfferFullParams:
        resp = self._get(credential, self._urls.offer_edit(node_id, offer_id))
        return parse_offer_full_params(resp.text(), offer_id, node_id)

    def edit_offer(self, credential: Credential, offer_id: int, node_id: int, params: OfferEditParams) -> Any:
        def field(key: str, value: str | None) -> tuple[str, str]:
            return key, value or ""

        form: list[tuple[str, str]] = [
            ("csrf_token", credential.csrf_token),
            ("form_created_at", str(int(time.time()))),
            ("offer_id", str(offer_id)),
            ("node_id", str(node_id)),
            field("location", params.location),
            ("deleted", "1" if params.deleted else ""),
            field("fields[quantity]", params.quantity),
            field("fields[quantity2]", params.quantity2),
            field("fields[method]", params.method),
            field("fields[type]", params.offer_type),
            field("server_id", params.server_id),
            field("fields[desc][ru]", params.desc_ru),
            field("fields[desc][en]", params.desc_en),
            field("fields[payment_msg][ru]", params.payment_msg_ru),
            field("fields[payment_msg][en]", params.payment_msg_en),
            field("fields[summary][ru]", params.summary_ru),
            field("fields[summary][en]", params.summary_en),
            field("fields[game]", params.game),
            field("fields[images]", params.images),
            field("price", params.price),
        ]
        if params.deactivate_after_sale:
            form += [("deactivate_after_sale[]", ""), ("deactivate_after_sale[]", "on")]
        else:
            form.append(("deactivate_after_sale", ""))
        form.append(("active", "on" if params.active is None or params.active else ""))

        resp = self._http.post(
            self._urls.offer_save(),
            data=encode_form(form),
            headers=self._headers(
                credential,
                **{
                    "Content-Type": _FORM_CONTENT_TYPE,
                    "X-Requested-With": "XMLHttpRequest",
                    "Accept": "application/json, text/javascript, */*; q=0.01",
                    "Origin": self._urls.base_url,
                    "Referer": self._urls.offer_edit(node_id, offer_id),
                },
            ),
        )
        logger.info("offer saved: offer_id=%d node_id=%d status=%d", offer_id, node_id, resp.status)
        try:
            return resp.json()
        except MalformedPayloadError:
            return None

    def list_my_offers(self, credential: Credential, node_id: int) -> list[Offer]:
        resp = self._get(credential, self._urls.lots_trade(node_id))
        return parse_my_offers(resp.text(), node_id)

    def get_order(self, credential: Credential, order_id: str) -> Order:
        resp = self._get(credential, self._urls.order_page(order_id))
        return parse_order_page(resp.text(), order_id)

    def get_order_secrets(self, credential: Credential, order_id: str) -> list[str]:
        resp = self._get(credential, self._urls.order_page(order_id))
        return parse_order_secrets(resp.text())

    def get_market_offers(self, credential: Credential, node_id: int) -> list[MarketOffer]:
        resp = self._get(credential, self._urls.lots_page(node_id))
        return parse_market_offers(resp.text(), node_id)

    def get_category_subcategories(self, credential: Credential, node_id: int) -> list[CategorySubcategory]:
        resp = self._get(credential, self._urls.lots_page(node_id))
        return parse_category_subcategories(resp.text())

    def get_category_filters(self, credential: Credential, node_id: int) -> list[CategoryFilter]:
        resp = self._get(credential, self._urls.lots_page(node_id))
        return parse_category_filters(resp.text())
