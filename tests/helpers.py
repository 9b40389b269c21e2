import asyncio

from order_service.models import OrderLine


def run(coro):
    return asyncio.run(coro)


def line(product, quantity):
    return OrderLine(productId=product.id, quantity=quantity)
