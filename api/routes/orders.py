"""
订单API路由 - FastAPI表现层
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_order_service
from application.dtos.orders import (
    AddOrderItem,
    ModifiableResponse,
    OrderCancel,
    OrderQuoteResponse,
    OrderResponse,
    OrderStatusUpdate,
    PlaceOrder,
)
from application.services.order_service import OrderApplicationService
from core.config import settings
from core.response import success_response, Response as ApiResponse

router = APIRouter(
    prefix="/orders",
    tags=["订单管理"]
)


@router.post("", summary="下单", response_model=ApiResponse[OrderResponse])
async def place_order(
    payload: PlaceOrder,
    service: OrderApplicationService = Depends(get_order_service),
):
    """
    创建订单（初始状态 PENDING）

    - **items**: 订单行（数量 > 0，单价 >= 0）
    - **delivery**: 收货信息，省份必须在配送范围内
    - **is_rush_order**: 加急配送，仅限主要城市
    """
    order = await service.place_order(payload)
    return success_response(data=order, message="Order created")


@router.post("/quote", summary="订单计价", response_model=ApiResponse[OrderQuoteResponse])
async def quote_order(
    payload: PlaceOrder,
    service: OrderApplicationService = Depends(get_order_service),
):
    """计算小计、增值税、运费与应付总额，不落库"""
    quote = await service.calculate_order_total(payload)
    return success_response(data=quote)


@router.get("", summary="客户订单列表", response_model=ApiResponse[List[OrderResponse]])
async def list_orders(
    customer_id: str = Query(..., min_length=1),
    skip: int = Query(0, ge=0),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    service: OrderApplicationService = Depends(get_order_service),
):
    orders = await service.list_customer_orders(customer_id, skip=skip, limit=limit)
    return success_response(data=orders)


@router.get("/{order_id}", summary="获取订单", response_model=ApiResponse[OrderResponse])
async def get_order(
    order_id: int,
    service: OrderApplicationService = Depends(get_order_service),
):
    order = await service.get_order(order_id)
    return success_response(data=order)


@router.post("/{order_id}/cancel", summary="取消订单", response_model=ApiResponse[OrderResponse])
async def cancel_order(
    order_id: int,
    payload: Optional[OrderCancel] = None,
    service: OrderApplicationService = Depends(get_order_service),
):
    """仅 PENDING / CONFIRMED 订单可取消"""
    order = await service.cancel_order(order_id, payload.reason if payload else None)
    return success_response(data=order, message="Order cancelled")


@router.patch("/{order_id}/status", summary="变更订单状态", response_model=ApiResponse[OrderResponse])
async def update_order_status(
    order_id: int,
    payload: OrderStatusUpdate,
    service: OrderApplicationService = Depends(get_order_service),
):
    order = await service.update_status(order_id, payload.status, payload.reason)
    return success_response(data=order, message="Order status updated")


@router.get("/{order_id}/modifiable", summary="订单是否可修改", response_model=ApiResponse[ModifiableResponse])
async def can_modify_order(
    order_id: int,
    service: OrderApplicationService = Depends(get_order_service),
):
    modifiable = await service.can_modify_order(order_id)
    return success_response(data=ModifiableResponse(order_id=order_id, modifiable=modifiable))


@router.post("/{order_id}/items", summary="追加订单行", response_model=ApiResponse[OrderResponse])
async def add_order_item(
    order_id: int,
    payload: AddOrderItem,
    service: OrderApplicationService = Depends(get_order_service),
):
    order = await service.add_item(order_id, payload)
    return success_response(data=order, message="Item added")


@router.delete("/{order_id}/items/{product_id}", summary="移除订单行", response_model=ApiResponse[OrderResponse])
async def remove_order_item(
    order_id: int,
    product_id: int,
    service: OrderApplicationService = Depends(get_order_service),
):
    order = await service.remove_item(order_id, product_id)
    return success_response(data=order, message="Item removed")
