from rest_framework import serializers
from django.db import transaction

from .models import PayoutMethod, Transaction


class TransactionSerializer(serializers.ModelSerializer):
    class Meta:
        model = Transaction
        fields = [
            'id', 'project', 'milestone', 'dispute', 'type', 'amount', 'platform_fee', 'currency',
            'from_user', 'to_user', 'status', 'provider', 'provider_transaction_id', 'failure_reason',
            'created_at', 'completed_at',
        ]
        read_only_fields = fields


class PayoutMethodSerializer(serializers.ModelSerializer):
    class Meta:
        model = PayoutMethod
        fields = ['id', 'provider', 'account_reference', 'details', 'is_default', 'is_verified', 'is_active', 'created_at', 'updated_at']
        read_only_fields = ['id', 'is_verified', 'created_at', 'updated_at']


class PayoutMethodCreateSerializer(serializers.Serializer):
    provider = serializers.ChoiceField(choices=PayoutMethod.PROVIDER_CHOICES)
    account_reference = serializers.CharField(max_length=255, help_text="Stripe connected account id or bank account number")
    bank_code = serializers.CharField(required=False, allow_blank=True)
    account_name = serializers.CharField(required=False, allow_blank=True)
    is_default = serializers.BooleanField(default=False)

    def validate(self, attrs):
        user = self.context['request'].user
        provider = attrs['provider']
        account_reference = attrs['account_reference']

        if provider == 'stripe' and not account_reference.startswith('acct_'):
            raise serializers.ValidationError({'account_reference': 'Stripe payouts need a connected account id (acct_...).'})
        if provider == 'chapa' and not attrs.get('bank_code'):
            raise serializers.ValidationError({'bank_code': 'Chapa payouts need the bank code.'})

        existing = PayoutMethod.objects.filter(
            user=user,
            provider=provider,
            account_reference=account_reference,
        ).exists()
        if existing:
            raise serializers.ValidationError(f'This {provider} account is already added as a payout method.')
        return attrs

    def create(self, validated_data):
        user = self.context['request'].user
        details = {}
        for key in ('bank_code', 'account_name'):
            value = validated_data.pop(key, '')
            if value:
                details[key] = value

        with transaction.atomic():
            if validated_data['is_default']:
                PayoutMethod.objects.filter(user=user, is_default=True).update(is_default=False)
            return PayoutMethod.objects.create(user=user, details=details, **validated_data)


class SetPayoutMethodFlagsSerializer(serializers.Serializer):
    is_default = serializers.BooleanField(required=False)
    is_active = serializers.BooleanField(required=False)
