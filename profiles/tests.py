from django.contrib.auth import get_user_model
from django.contrib.auth.models import Permission
from django.test import TestCase
from django.urls import reverse

from core.errors import AuthenticationRequired, NotFound
from profiles.identity import resolve_identity
from profiles.models import InstructorProfile, TierChange

User = get_user_model()


def mk_user(username, **profile):
    user = User.objects.create_user(username=username, password="x", email=f"{username}@example.com")
    if profile:
        InstructorProfile.objects.create(user=user, **profile)
    return user


class IdentityTests(TestCase):
    def test_resolves_role_and_tier(self):
        user = mk_user("ivy", role="IP", tier="robust", display_name="Ivy Instructor")
        identity = resolve_identity(user.id)
        self.assertEqual((identity.user_id, identity.role, identity.tier), (user.id, "IP", "robust"))
        self.assertEqual(identity.display_name, "Ivy Instructor")

    def test_display_name_falls_back_to_username(self):
        user = mk_user("noname", role="IT", tier="basic")
        self.assertEqual(resolve_identity(user.id).display_name, "noname")

    def test_missing_user_id_is_unauthenticated(self):
        for value in (None, 0, ""):
            with self.subTest(value=value):
                with self.assertRaises(AuthenticationRequired):
                    resolve_identity(value)

    def test_user_without_profile_is_not_found(self):
        user = mk_user("plain")
        with self.assertRaises(NotFound):
            resolve_identity(user.id)
        with self.assertRaises(NotFound):
            resolve_identity("not-a-number")


class MeViewTests(TestCase):
    def setUp(self):
        self.user = mk_user("ivy", role="IT", tier="basic")
        self.reviewer = mk_user("rita")
        self.reviewer.user_permissions.add(
            Permission.objects.get(codename="review_compliancerecord", content_type__app_label="compliance_app")
        )

    def test_requires_login(self):
        res = self.client.get(reverse("me"))
        self.assertIn(res.status_code, (401, 403))

    def test_profile_and_history(self):
        TierChange.objects.create(user=self.user, old_tier="basic", new_tier="robust", reason="promoted")
        self.client.force_login(self.user)
        res = self.client.get(reverse("me"))
        self.assertEqual(res.status_code, 200)
        body = res.json()
        self.assertEqual(body["username"], "ivy")
        self.assertFalse(body["is_reviewer"])
        self.assertEqual(body["profile"], {"role": "IT", "tier": "basic", "display_name": "ivy"})
        self.assertEqual(body["tier_history"][0]["new_tier"], "robust")

    def test_reviewer_without_profile(self):
        self.client.force_login(self.reviewer)
        body = self.client.get(reverse("me")).json()
        self.assertTrue(body["is_reviewer"])
        self.assertIsNone(body["profile"])
