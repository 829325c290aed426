# -*- coding: utf-8 -*-
"""
Print-on-demand catalog defaults per merchandise category.

Used when a creator lists merchandise without giving a production cost or
fulfillment variants of their own.
"""
from decimal import Decimal
from typing import Dict, List

# Printful catalog product ids
CATEGORY_PRODUCT_IDS = {
    't-shirt': 12,
    'hoodie': 146,
    'hat': 627,
    'mug': 300,
    'sticker': 673,
}

DEFAULT_PRODUCTION_COSTS = {
    't-shirt': Decimal('9.95'),
    'mug': Decimal('5.95'),
    'poster': Decimal('8.95'),
    'sticker': Decimal('1.95'),
    'hoodie': Decimal('19.95'),
}
FALLBACK_PRODUCTION_COST = Decimal('10.00')

_SIZES = ('S', 'M', 'L', 'XL', 'XXL')

# (color, size) -> catalog variant id
_VARIANT_IDS = {
    't-shirt': {
        **{('Black', s): v for s, v in zip(_SIZES, (474, 505, 536, 567, 598))},
        **{('White', s): v for s, v in zip(_SIZES, (473, 504, 535, 566, 597))},
    },
    'hoodie': {
        **{('Black', s): v for s, v in zip(_SIZES, (5530, 5531, 5532, 5533, 5534))},
        **{('White', s): v for s, v in zip(_SIZES, (5522, 5523, 5524, 5525, 5526))},
    },
    'hat': {('White', 'N/A'): 15905, ('Black', 'N/A'): 15908},
    'mug': {('Black', 'N/A'): 9323, ('White', 'N/A'): 1320},
    'sticker': {('', 'N/A'): 16705},
}

_RETAIL_PRICES = {
    't-shirt': '39.99',
    'hoodie': '69.99',
    'hat': '29.99',
    'mug': '19.99',
    'sticker': '1.99',
}


def default_production_cost(category: str) -> Decimal:
    return DEFAULT_PRODUCTION_COSTS.get(category, FALLBACK_PRODUCTION_COST)


def default_variants(category: str) -> List[Dict]:
    """Catalog variants for a category as stored on Merchandise.printful_variants."""
    retail = _RETAIL_PRICES.get(category)
    return [
        {
            'variant_id': variant_id,
            'external_id': None,
            'retail_price': retail,
            'size': size,
            'color': color,
        }
        for (color, size), variant_id in _VARIANT_IDS.get(category, {}).items()
    ]
