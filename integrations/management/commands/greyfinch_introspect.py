"""
List the root query fields the Greyfinch schema currently exposes.

    python manage.py greyfinch_introspect
    python manage.py greyfinch_introspect --user admin
"""

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError

from core.exceptions import CredentialsInvalidError, UpstreamError
from integrations.services.greyfinch import GreyfinchClient, GreyfinchConfig, config_for_user
from integrations.services.greyfinch_schema import COLLECTION_MAP, SCHEMA_VERSION


class Command(BaseCommand):
    help = 'Introspect the Greyfinch GraphQL schema and compare it with the mapped collections'

    def add_arguments(self, parser):
        parser.add_argument('--user', help='Use this user\'s Greyfinch API configuration')

    def handle(self, *args, **options):
        if options.get('user'):
            User = get_user_model()
            try:
                user = User.objects.get(username=options['user'])
            except User.DoesNotExist:
                raise CommandError(f"User {options['user']} not found")
            config = config_for_user(user)
        else:
            config = GreyfinchConfig.from_settings()

        try:
            fields = GreyfinchClient(config).introspect()
        except (CredentialsInvalidError, UpstreamError) as e:
            raise CommandError(e.message)

        available = {field['name'] for field in fields}
        self.stdout.write(f"Schema version in use: {SCHEMA_VERSION}")
        self.stdout.write(f"{len(fields)} root query fields:")
        for field in sorted(fields, key=lambda f: f['name'] or ''):
            self.stdout.write(f"  {field['name']}: {field['type']} ({field['kind']})")

        missing = [name for name in COLLECTION_MAP if name not in available]
        if missing:
            self.stdout.write(self.style.WARNING(f"Mapped collections missing upstream: {', '.join(missing)}"))
        else:
            self.stdout.write(self.style.SUCCESS("All mapped collections are available"))
