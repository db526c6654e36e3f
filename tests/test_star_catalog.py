"""星表模块单元测试"""

import pytest


def _star(x, y, mag=0.0, fwhm=3.0, units="px"):
    from starfinder.core.models import FittedStar

    return FittedStar(xpos=x, ypos=y, mag=mag, fwhmx=fwhm, fwhmy=fwhm, units=units)


class TestInsertAuto:

    def test_appends_in_order(self):
        from starfinder.core.star_catalog import StarCatalog

        catalog = StarCatalog()
        for i in range(3):
            assert catalog.insert_auto(_star(i * 10, 0))
        assert [s.xpos for s in catalog] == [0, 10, 20]

    def test_capacity_bound(self):
        from starfinder.core.star_catalog import StarCatalog

        catalog = StarCatalog(max_stars=2)
        assert catalog.insert_auto(_star(0, 0))
        assert catalog.insert_auto(_star(10, 0))
        assert catalog.is_full
        assert not catalog.insert_auto(_star(20, 0))
        assert len(catalog) == 2

    def test_invalid_capacity(self):
        from starfinder.core.star_catalog import StarCatalog

        with pytest.raises(ValueError):
            StarCatalog(max_stars=0)


class TestInsertManual:
    """测试手动添加 (不经过接受性过滤，但去重)"""

    def test_adds_star_in_image_coordinates(self, single_star_image):
        from starfinder.core.models import Rectangle
        from starfinder.core.star_catalog import StarCatalog

        catalog = StarCatalog()
        index, star = catalog.insert_manual(Rectangle(15, 17, 20, 16), single_star_image)
        assert index == 0
        assert star.xpos == pytest.approx(25.0, abs=0.5)
        assert star.ypos == pytest.approx(25.0, abs=0.5)
        assert len(catalog) == 1

    def test_duplicate_rejected_without_mutation(self, single_star_image):
        from starfinder.core.errors import DuplicateStar
        from starfinder.core.models import FindStarParams, Rectangle
        from starfinder.core.star_catalog import StarCatalog
        from starfinder.core.star_finder import peaker

        catalog = StarCatalog()
        peaker(single_star_image, FindStarParams(roundness=0.1), catalog)
        before = catalog.stars

        with pytest.raises(DuplicateStar):
            catalog.insert_manual(Rectangle(15, 15, 20, 20), single_star_image)
        assert catalog.stars == before

    def test_bypasses_roundness_filter(self, elongated_star_image):
        from starfinder.core.models import FindStarParams, Rectangle
        from starfinder.core.star_catalog import StarCatalog
        from starfinder.core.star_finder import peaker

        catalog = StarCatalog()
        assert peaker(elongated_star_image, FindStarParams(roundness=0.99), catalog) == 0

        _, star = catalog.insert_manual(Rectangle(13, 15, 24, 20), elongated_star_image)
        assert len(catalog) == 1
        assert star.fwhmy / star.fwhmx < 0.99

    def test_full_catalog_raises(self, single_star_image):
        from starfinder.core.errors import CatalogFull
        from starfinder.core.models import Rectangle
        from starfinder.core.star_catalog import StarCatalog

        catalog = StarCatalog(max_stars=3)
        for i in range(3):
            catalog.insert_auto(_star(2.0 + i, 2.0))

        with pytest.raises(CatalogFull):
            catalog.insert_manual(Rectangle(15, 15, 20, 20), single_star_image)
        assert len(catalog) == 3

    def test_region_outside_image_raises(self, single_star_image):
        from starfinder.core.models import Rectangle
        from starfinder.core.star_catalog import StarCatalog

        catalog = StarCatalog()
        with pytest.raises(ValueError):
            catalog.insert_manual(Rectangle(40, 40, 20, 20), single_star_image)

    def test_tiny_region_fit_failure(self, single_star_image):
        from starfinder.core.errors import FitFailure
        from starfinder.core.models import Rectangle
        from starfinder.core.star_catalog import StarCatalog

        catalog = StarCatalog()
        with pytest.raises(FitFailure):
            catalog.insert_manual(Rectangle(24, 24, 2, 2), single_star_image)
        assert len(catalog) == 0


class TestRemove:

    def _catalog(self, n):
        from starfinder.core.star_catalog import StarCatalog

        catalog = StarCatalog()
        for i in range(n):
            catalog.insert_auto(_star(i * 10, i * 10, mag=float(i)))
        return catalog

    def test_remove_preserves_order(self):
        catalog = self._catalog(5)
        removed = catalog.remove(2)
        assert removed.xpos == 20
        assert [s.xpos for s in catalog] == [0, 10, 30, 40]

    @pytest.mark.parametrize("index", [-1, 5, 100])
    def test_invalid_index(self, index):
        from starfinder.core.errors import InvalidIndex

        catalog = self._catalog(5)
        with pytest.raises(InvalidIndex):
            catalog.remove(index)
        assert len(catalog) == 5

    def test_remove_from_empty(self):
        from starfinder.core.errors import InvalidIndex

        catalog = self._catalog(0)
        with pytest.raises(InvalidIndex):
            catalog.remove(0)

    def test_invalid_index_is_index_error(self):
        catalog = self._catalog(1)
        with pytest.raises(IndexError):
            catalog.remove(3)


class TestSortAndStats:

    def test_sort_by_magnitude(self):
        from starfinder.core.star_catalog import StarCatalog

        catalog = StarCatalog()
        for mag in [3.0, -1.0, 2.0, -5.0, 2.0]:
            catalog.insert_auto(_star(0, 0, mag=mag))
        catalog.sort_by_magnitude()
        mags = [s.mag for s in catalog]
        assert mags == sorted(mags)

        first = catalog.stars
        catalog.sort_by_magnitude()
        assert catalog.stars == first

    def test_sort_is_stable(self):
        from starfinder.core.star_catalog import StarCatalog

        catalog = StarCatalog()
        for x in range(4):
            catalog.insert_auto(_star(x, 0, mag=1.0))
        catalog.sort_by_magnitude()
        assert [s.xpos for s in catalog] == [0, 1, 2, 3]

    def test_nan_magnitude_sorted_last(self):
        from starfinder.core.star_catalog import StarCatalog

        catalog = StarCatalog()
        catalog.insert_auto(_star(0, 0, mag=float("nan")))
        catalog.insert_auto(_star(1, 0, mag=2.0))
        catalog.sort_by_magnitude()
        assert catalog[0].xpos == 1

    def test_average_fwhm(self):
        from starfinder.core.star_catalog import StarCatalog

        catalog = StarCatalog()
        for fwhm in [2.0, 4.0, 9.0]:
            catalog.insert_auto(_star(0, 0, fwhm=fwhm, units='"'))
        assert catalog.average_fwhm(2) == (3.0, 3.0, '"')
        assert catalog.average_fwhm() == (5.0, 5.0, '"')
        assert catalog.average_fwhm(10) == (5.0, 5.0, '"')

    def test_average_fwhm_empty_raises(self):
        from starfinder.core.star_catalog import StarCatalog

        with pytest.raises(ValueError):
            StarCatalog().average_fwhm()

    def test_clear_and_replace(self):
        from starfinder.core.errors import CatalogFull
        from starfinder.core.star_catalog import StarCatalog

        catalog = StarCatalog(max_stars=2)
        catalog.insert_auto(_star(0, 0))
        catalog.clear()
        assert len(catalog) == 0

        catalog.replace([_star(1, 1), _star(2, 2)])
        assert len(catalog) == 2
        with pytest.raises(CatalogFull):
            catalog.replace([_star(i, i) for i in range(3)])


class TestListeners:

    def test_events(self):
        from starfinder.core.star_catalog import StarCatalog

        events = []
        catalog = StarCatalog()
        catalog.add_listener(lambda event, index: events.append((event, index)))

        catalog.insert_auto(_star(0, 0))
        catalog.insert_auto(_star(5, 5))
        catalog.remove(0)
        catalog.sort_by_magnitude()
        catalog.clear()

        assert events == [("add", 0), ("add", 1), ("remove", 0), ("sort", -1), ("clear", -1)]

    def test_failing_listener_does_not_break_mutation(self):
        from starfinder.core.star_catalog import StarCatalog

        def boom(event, index):
            raise RuntimeError("listener error")

        catalog = StarCatalog()
        catalog.add_listener(boom)
        assert catalog.insert_auto(_star(0, 0))
        assert len(catalog) == 1

        catalog.remove_listener(boom)
        catalog.remove(0)
        assert len(catalog) == 0
