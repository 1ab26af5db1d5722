from django.core.exceptions import ValidationError
from django.test import TestCase

from catalog.models import Category


class CategoryAncestorTests(TestCase):
    def setUp(self):
        self.root = Category.objects.create(name="Home")
        self.kitchen = Category.objects.create(name="Kitchen", parent=self.root)
        self.knives = Category.objects.create(name="Knives", parent=self.kitchen)

    def test_ancestors_are_nearest_first(self):
        self.assertEqual(self.root.ancestor_ids, [])
        self.assertEqual(self.kitchen.ancestor_ids, [self.root.pk])
        self.knives.refresh_from_db()
        self.assertEqual(self.knives.ancestor_ids, [self.kitchen.pk, self.root.pk])

    def test_moving_a_category_updates_descendants(self):
        garden = Category.objects.create(name="Garden")
        self.kitchen.parent = garden
        self.kitchen.save()

        self.knives.refresh_from_db()
        self.assertEqual(self.knives.ancestor_ids, [self.kitchen.pk, garden.pk])

    def test_cycles_are_rejected(self):
        self.root.parent = self.knives
        with self.assertRaises(ValidationError):
            self.root.save()
