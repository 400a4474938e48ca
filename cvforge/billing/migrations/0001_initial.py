import django.db.models.deletion
import django.utils.timezone
import model_utils.fields
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ("resumes", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Account",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created", model_utils.fields.AutoCreatedField(default=django.utils.timezone.now, editable=False, verbose_name="created")),
                ("modified", model_utils.fields.AutoLastModifiedField(default=django.utils.timezone.now, editable=False, verbose_name="modified")),
                ("status", models.CharField(choices=[("TRIAL", "Trial"), ("ACTIVE", "Active"), ("PAST_DUE", "Past Due"), ("CANCELLED", "Cancelled")], default="TRIAL", max_length=20)),
                ("trial_ends_at", models.DateTimeField(help_text="End of the free trial. Set once at provisioning.")),
                ("current_period_end", models.DateTimeField(blank=True, help_text="End of the current paid period, as last reported by Stripe.", null=True)),
                ("stripe_customer_id", models.CharField(blank=True, help_text="Stripe Customer ID (cus_xxx). Null until first checkout.", max_length=255, null=True, unique=True)),
                ("stripe_subscription_id", models.CharField(blank=True, default="", help_text="Stripe Subscription ID (sub_xxx).", max_length=255)),
                ("subscription_event_at", models.DateTimeField(blank=True, help_text="Stripe creation time of the newest subscription event applied. Older subscription events are skipped.", null=True)),
                ("ai_credits_used", models.PositiveIntegerField(default=0, help_text="AI generations consumed in the current billing period.")),
                ("ai_credits_reset_at", models.DateTimeField(default=django.utils.timezone.now, help_text="When ai_credits_used was last reset to zero.")),
                ("user", models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name="billing_account", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "indexes": [models.Index(fields=["status"], name="billing_acc_status_5b0c1e_idx")],
            },
        ),
        migrations.CreateModel(
            name="Purchase",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created", model_utils.fields.AutoCreatedField(default=django.utils.timezone.now, editable=False, verbose_name="created")),
                ("modified", model_utils.fields.AutoLastModifiedField(default=django.utils.timezone.now, editable=False, verbose_name="modified")),
                ("stripe_payment_intent_id", models.CharField(help_text="Stripe PaymentIntent ID (pi_xxx).", max_length=255, unique=True)),
                ("stripe_checkout_session_id", models.CharField(blank=True, default="", help_text="Stripe Checkout Session ID (cs_xxx).", max_length=255)),
                ("amount", models.PositiveIntegerField(default=0, help_text="Amount charged, in the currency's minor unit.")),
                ("currency", models.CharField(default="ron", max_length=3)),
                ("status", models.CharField(choices=[("PENDING", "Pending"), ("COMPLETED", "Completed")], default="PENDING", max_length=20)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("account", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="purchases", to="billing.account")),
                ("resume", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="purchases", to="resumes.resume")),
            ],
            options={
                "ordering": ["-created"],
            },
        ),
        migrations.CreateModel(
            name="WebhookEvent",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created", model_utils.fields.AutoCreatedField(default=django.utils.timezone.now, editable=False, verbose_name="created")),
                ("modified", model_utils.fields.AutoLastModifiedField(default=django.utils.timezone.now, editable=False, verbose_name="modified")),
                ("stripe_event_id", models.CharField(max_length=255, unique=True)),
                ("event_type", models.CharField(max_length=100)),
                ("status", models.CharField(choices=[("RECEIVED", "Received"), ("PROCESSED", "Processed"), ("IGNORED", "Ignored"), ("FAILED", "Failed"), ("DEAD_LETTERED", "Dead-lettered")], default="RECEIVED", max_length=20)),
                ("attempts", models.PositiveIntegerField(default=0)),
                ("last_error", models.TextField(blank=True, default="")),
                ("payload", models.JSONField(default=dict)),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
            ],
            options={
                "ordering": ["-created"],
                "indexes": [models.Index(fields=["status"], name="billing_web_status_8e2f4a_idx")],
            },
        ),
    ]
