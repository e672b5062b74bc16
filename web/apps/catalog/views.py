"""Catalog endpoints: staff product updates and restocking, public stock checks."""

from pydantic import ValidationError as PydanticValidationError
from rest_framework import status
from rest_framework.permissions import AllowAny, IsAdminUser
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.orders import providers
from apps.orders.domain import OrderError
from apps.orders.views import error_response

from .availability import AvailabilityCheckDTO, check_availability, stock_levels
from .models import Product
from .reader import DjangoCatalogReader
from .updates import ProductUpdateDTO, RestockDTO, apply_product_update, restock


def product_body(p: Product) -> dict:
    """Product as shown to staff; stock counts are read live from the ledger."""
    levels = stock_levels(p, providers.get_stock_ledger())
    return {
        "id": str(p.id),
        "name": p.name,
        "description": p.description,
        "category": p.category,
        "price": str(p.price),
        "is_active": p.is_active,
        "brand": p.brand,
        "material": p.material,
        "tags": p.tags,
        "total_stock": sum(levels.values()),
        "variants": [{"size": v.size, "stock": levels.get(v.size, 0), "sku": v.sku} for v in p.variants.all()],
    }


def invalid_payload(e: PydanticValidationError) -> Response:
    return Response(
        {"detail": "INVALID_PAYLOAD", "errors": e.errors(include_url=False, include_context=False, include_input=False)},
        status=status.HTTP_400_BAD_REQUEST,
    )


class ProductDetailView(APIView):
    permission_classes = [IsAdminUser]

    def patch(self, request, pid):
        try:
            dto = ProductUpdateDTO.model_validate(request.data)
        except PydanticValidationError as e:
            return invalid_payload(e)
        try:
            product = apply_product_update(pid, dto)
            return Response(product_body(product))
        except OrderError as e:
            return error_response(e)


class ProductStockView(APIView):
    permission_classes = [IsAdminUser]

    def put(self, request, pid):
        try:
            dto = RestockDTO.model_validate(request.data)
        except PydanticValidationError as e:
            return invalid_payload(e)
        try:
            product = restock(pid, dto, providers.get_stock_ledger())
            return Response(product_body(product))
        except OrderError as e:
            return error_response(e)


class AvailabilityView(APIView):
    """Whether a product (and size) has enough stock for a quantity."""

    permission_classes = [AllowAny]

    def post(self, request):
        try:
            dto = AvailabilityCheckDTO.model_validate(request.data)
        except PydanticValidationError as e:
            return invalid_payload(e)
        try:
            result = check_availability(dto, DjangoCatalogReader(), providers.get_stock_ledger())
        except OrderError as e:
            return error_response(e)
        return Response(result.to_json())
