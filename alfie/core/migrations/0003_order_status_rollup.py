"""
Order.status is rolled up from its jobs: add the partial, failed and
canceled outcomes and drop the unused draft value.
"""

from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("core", "0002_brand_owner_order"),
    ]

    operations = [
        migrations.AlterField(
            model_name="order",
            name="status",
            field=models.CharField(
                choices=[
                    ("in_progress", "In Progress"),
                    ("completed", "Completed"),
                    ("partial", "Partial"),
                    ("failed", "Failed"),
                    ("canceled", "Canceled"),
                ],
                default="in_progress",
                max_length=20,
            ),
        ),
    ]
