"""Unit tests for planning a crop sale against held quantities."""
import pytest

from backend.errors import InsufficientCropsError, ValidationError
from backend.models import plan_crop_sale


class TestPlanCropSale:
    def test_remaining_quantities(self):
        assert plan_crop_sale({1: 5, 2: 3}, [(1, 2), (2, 3)]) == {1: 3, 2: 0}

    def test_repeated_ids_are_summed(self):
        assert plan_crop_sale({1: 5}, [(1, 2), (1, 2)]) == {1: 1}

    def test_selling_more_than_held(self):
        with pytest.raises(InsufficientCropsError):
            plan_crop_sale({1: 1}, [(1, 2)])

    def test_selling_unheld_crop(self):
        with pytest.raises(InsufficientCropsError):
            plan_crop_sale({1: 1}, [(2, 1)])

    @pytest.mark.parametrize('quantity', [0, -1, 'two'])
    def test_bad_quantities(self, quantity):
        with pytest.raises(InsufficientCropsError):
            plan_crop_sale({1: 5}, [(1, quantity)])

    def test_empty_request(self):
        with pytest.raises(ValidationError):
            plan_crop_sale({1: 5}, [])
