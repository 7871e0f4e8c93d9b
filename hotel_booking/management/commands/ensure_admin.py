import os

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError


class Command(BaseCommand):
    help = 'Create the administrator account used by the admin panel if it does not exist'

    def add_arguments(self, parser):
        parser.add_argument('--email', default=os.getenv('ADMIN_EMAIL'))
        parser.add_argument('--password', default=os.getenv('ADMIN_PASSWORD'))
        parser.add_argument('--name', default=os.getenv('ADMIN_NAME', 'Administrator'))

    def handle(self, *args, **options):
        email = options['email']
        password = options['password']
        if not email or not password:
            raise CommandError('Provide --email and --password (or ADMIN_EMAIL / ADMIN_PASSWORD)')

        User = get_user_model()
        if User.objects.filter(email__iexact=email, is_staff=True).exists():
            self.stdout.write(f'Admin {email} already exists')
            return

        User.objects.create_user(
            username=email.lower(),
            email=email.lower(),
            password=password,
            first_name=options['name'],
            is_staff=True,
        )
        self.stdout.write(self.style.SUCCESS(f'Created admin {email}'))
