import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("core", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="QuotaAccount",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("quota_images", models.IntegerField(default=0)),
                ("images_used", models.IntegerField(default=0)),
                ("quota_videos", models.IntegerField(default=0)),
                ("videos_used", models.IntegerField(default=0)),
                ("quota_credits", models.IntegerField(default=0)),
                ("credits_used", models.IntegerField(default=0)),
                ("resets_on", models.DateField(blank=True, null=True)),
                (
                    "brand",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="quota_account",
                        to="core.brand",
                    ),
                ),
            ],
            options={
                "db_table": "alfie_quota_account",
            },
        ),
        migrations.AddIndex(
            model_name="quotaaccount",
            index=models.Index(fields=["resets_on"], name="idx_quota_resets_on"),
        ),
    ]
