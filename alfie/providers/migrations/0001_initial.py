import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Provider",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "id",
                    models.CharField(max_length=100, primary_key=True, serialize=False),
                ),
                ("name", models.CharField(max_length=255)),
                ("modalities", models.JSONField(default=list)),
                ("formats", models.JSONField(default=list)),
                ("cost_json", models.JSONField(default=dict)),
                ("quality_score", models.FloatField(default=0.8)),
                ("avg_latency_s", models.FloatField(default=60.0)),
                ("fail_rate", models.FloatField(default=0.03)),
                ("enabled", models.BooleanField(default=True)),
            ],
            options={
                "db_table": "alfie_provider",
            },
        ),
        migrations.CreateModel(
            name="ProviderMetrics",
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
                ("use_case", models.CharField(max_length=100)),
                ("format", models.CharField(max_length=50)),
                ("trials", models.PositiveIntegerField(default=0)),
                ("avg_reward", models.FloatField(default=0.0)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "provider",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="metrics",
                        to="providers.provider",
                    ),
                ),
            ],
            options={
                "db_table": "alfie_provider_metrics",
            },
        ),
        migrations.AddConstraint(
            model_name="providermetrics",
            constraint=models.UniqueConstraint(
                fields=("provider", "use_case", "format"),
                name="uniq_provider_metrics_context",
            ),
        ),
    ]
