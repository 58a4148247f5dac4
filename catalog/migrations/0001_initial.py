import django.core.validators
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="RequirementDefinition",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("code", models.SlugField(max_length=100, unique=True)),
                ("name", models.CharField(max_length=255)),
                ("description", models.TextField(blank=True)),
                (
                    "kind",
                    models.CharField(
                        choices=[("form", "Form"), ("file_upload", "File upload"), ("external_link", "External link")],
                        max_length=20,
                    ),
                ),
                (
                    "requirement_type",
                    models.CharField(
                        choices=[
                            ("document", "Document"),
                            ("training", "Training"),
                            ("certification", "Certification"),
                            ("assessment", "Assessment"),
                        ],
                        default="document",
                        max_length=20,
                    ),
                ),
                ("applicable_roles", models.JSONField(default=list, help_text='Role codes, e.g. ["IT", "IP"].')),
                (
                    "applicable_tiers",
                    models.JSONField(blank=True, default=list, help_text="Tier codes; leave empty for every tier."),
                ),
                ("points_value", models.PositiveIntegerField(default=0)),
                ("validation_rules", models.JSONField(blank=True, default=dict)),
                ("display_order", models.PositiveIntegerField(default=0)),
                (
                    "due_days",
                    models.PositiveIntegerField(
                        blank=True, null=True, help_text="Days from assignment until the requirement is due."
                    ),
                ),
                ("is_active", models.BooleanField(default=True)),
                ("published_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ("display_order", "id"),
            },
        ),
        migrations.CreateModel(
            name="TierPolicy",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("tier", models.CharField(choices=[("basic", "Basic"), ("robust", "Robust")], max_length=20)),
                (
                    "role",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("AP", "Authorized Provider"),
                            ("IC", "Certified Instructor"),
                            ("IP", "Provisional Instructor"),
                            ("IT", "Instructor in Training"),
                        ],
                        default="",
                        max_length=4,
                    ),
                ),
                (
                    "next_tier",
                    models.CharField(
                        blank=True,
                        choices=[("basic", "Basic"), ("robust", "Robust")],
                        default="",
                        help_text="Tier a user may advance to; blank for the highest tier.",
                        max_length=20,
                    ),
                ),
                (
                    "min_completion_percentage",
                    models.PositiveSmallIntegerField(
                        blank=True, null=True, validators=[django.core.validators.MaxValueValidator(100)]
                    ),
                ),
                ("min_points", models.PositiveIntegerField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "verbose_name_plural": "tier policies",
                "ordering": ("tier", "role"),
                "unique_together": {("tier", "role")},
            },
        ),
    ]
