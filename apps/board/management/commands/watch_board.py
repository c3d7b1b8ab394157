import asyncio

from django.core.management.base import BaseCommand, CommandError

from apps.board.adapters.supabase_remote import build_session
from apps.core.errors import ConfigurationError


class Command(BaseCommand):
    help = 'Ładuje tablicę użytkownika i wypisuje zmiany cache na bieżąco (realtime)'

    def add_arguments(self, parser):
        parser.add_argument('user_id')
        parser.add_argument('--seconds', type=float, default=None,
                            help='Czas nasłuchu; domyślnie do przerwania (Ctrl+C)')
        parser.add_argument('--no-realtime', action='store_true', help='Tylko jednorazowy load')

    def handle(self, *args, **options):
        try:
            session = build_session(options['user_id'], realtime=not options['no_realtime'])
        except ConfigurationError as exc:
            raise CommandError(f"{exc.message} ({exc.hint})")
        try:
            asyncio.run(self._watch(session, options['seconds'], options['no_realtime']))
        except KeyboardInterrupt:
            self.stdout.write('Przerwano.')

    async def _watch(self, session, seconds, once):
        result = await session.start()
        if not result.ok:
            await session.close()
            raise CommandError(f'Nie udało się załadować projektów: {result.reason}')

        profile = await session.load_profile()
        if profile.ok and session.profile:
            self.stdout.write(f"Użytkownik: {session.profile.get('name') or session.user_id}")
        self.stdout.write(self.style.SUCCESS(f'Załadowano {len(session.projects)} projektów.'))
        for project in session.projects:
            self.stdout.write(f"- {project.name} ({project.tasks.completed}/{project.tasks.total})")
        if once:
            await session.close()
            return

        session.watch(lambda store, scope, action, entity_id:
                      self.stdout.write(f"[{store}] {action} {scope} {entity_id or ''}"))
        try:
            if seconds is None:
                await asyncio.Event().wait()
            else:
                await asyncio.sleep(seconds)
        finally:
            await session.close()
