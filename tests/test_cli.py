"""
gentrust — management CLI tests.

Drives cli.main() with argv lists against a trust store under tmp_path
and checks exit codes plus --json output.
"""

import json

import pytest

from gentrust.cli import (
    EXIT_BLOCKED, EXIT_CORRUPTED, EXIT_DECLINED, EXIT_OK, EXIT_VALIDATION, main,
)


@pytest.fixture
def home(tmp_path):
    return str(tmp_path / "home")


@pytest.fixture
def run(home, capsys):
    """run(*argv) -> (exit_code, stdout); always JSON output."""
    def _run(*argv):
        capsys.readouterr()
        code = main(['--json', '--home', home] + list(argv))
        return code, capsys.readouterr().out
    return _run


class TestGrantAndList:

    def test_grant_then_list(self, run):
        code, out = run('grant', 'left-pad', '--reason', 'reviewed')
        assert code == EXIT_OK
        assert json.loads(out)['creator_id'] == 'npm:left-pad'

        code, out = run('list')
        entries = json.loads(out)
        assert code == EXIT_OK
        assert [e['creator_id'] for e in entries] == ['npm:left-pad']
        assert entries[0]['reason'] == 'reviewed'

    def test_temporary_grant(self, run):
        code, out = run('grant', 'acme/kit', '--hours', '2')
        assert code == EXIT_OK
        assert json.loads(out)['expires_at']

    @pytest.mark.parametrize("extra", [
        ['--hours', '0'],
        ['--hours', '1', '--expires', '2030-01-01T00:00:00Z'],
        ['--expires', 'yesterday'],
    ])
    def test_invalid_grant_options(self, run, extra):
        code, out = run('grant', 'npm:a', *extra)
        assert code == EXIT_VALIDATION
        assert json.loads(out)['exit_code'] == EXIT_VALIDATION

    def test_invalid_creator(self, run):
        code, out = run('grant', 'npm:')
        assert code == EXIT_VALIDATION
        assert json.loads(out)['type'] == 'InvalidCreatorIdError'

    def test_list_filter(self, run):
        run('grant', 'npm:a')
        run('block', 'npm:b', '--reason', 'spam')
        code, out = run('list', '--level', 'blocked')
        assert [e['creator_id'] for e in json.loads(out)] == ['npm:b']

    def test_table_output(self, home, capsys):
        assert main(['--home', home, 'grant', 'npm:a']) == EXIT_OK
        assert main(['--home', home, 'list']) == EXIT_OK
        assert 'npm:a' in capsys.readouterr().out


class TestBlockAndCheck:

    def test_check_levels(self, run):
        run('grant', 'npm:good')
        code, out = run('check', 'good', 'npm:other')
        checks = json.loads(out)
        assert code == EXIT_OK
        assert [c['security_level'] for c in checks] == ['TRUSTED', 'UNKNOWN']

    def test_blocked_check_exit_code(self, run):
        assert run('block', 'npm:evil', '--reason', 'malware')[0] == EXIT_OK
        code, out = run('check', 'npm:evil')
        assert code == EXIT_BLOCKED
        assert json.loads(out)[0]['trust_level'] == 'blocked'

    def test_check_on_corrupted_store(self, tmp_path, capsys):
        store = tmp_path / "trust.json"
        store.write_text("{garbage")
        code = main(['--json', '--home', str(tmp_path), '--store', str(store),
                     'check', 'npm:x'])
        [check] = json.loads(capsys.readouterr().out)
        assert code == EXIT_CORRUPTED
        assert check['security_level'] == 'BLOCKED'
        assert check['error_type'] == 'CorruptedStoreError'


    def test_grant_blocked_creator(self, run):
        run('block', 'npm:evil', '--reason', 'malware')
        code, _ = run('grant', 'npm:evil')
        assert code == EXIT_BLOCKED

    def test_unblock(self, run):
        run('block', 'npm:evil', '--reason', 'malware')
        code, out = run('unblock', 'evil')
        assert code == EXIT_OK
        assert json.loads(out)['trust_level'] == 'unknown'
        assert run('check', 'npm:evil')[0] == EXIT_OK

    def test_unblock_not_blocked(self, run):
        assert run('unblock', 'npm:nobody')[0] == EXIT_VALIDATION

    def test_revoke(self, run):
        run('grant', 'npm:a')
        code, out = run('revoke', 'a')
        assert code == EXIT_OK
        assert json.loads(out)['previous'] == 'trusted'


class TestLogs:

    def test_json_logs(self, run):
        run('grant', 'npm:a')
        run('block', 'npm:b', '--reason', 'spam')
        code, out = run('logs')
        records = json.loads(out)
        assert code == EXIT_OK
        assert [r['action'] for r in records] == ['grant', 'block']

    def test_filters(self, run):
        run('grant', 'npm:a')
        run('grant', 'npm:b')
        _, out = run('logs', '--creator', 'b')
        assert [r['creator_id'] for r in json.loads(out)] == ['npm:b']
        _, out = run('logs', '--action', 'block')
        assert json.loads(out) == []

    def test_csv_and_jsonl(self, run):
        run('grant', 'npm:a')
        _, out = run('logs', '--format', 'csv')
        assert out.splitlines()[0].startswith('sequence,timestamp,creator_id')
        _, out = run('logs', '--format', 'jsonl')
        assert json.loads(out.splitlines()[0])['creator_id'] == 'npm:a'

    def test_bad_since(self, run):
        assert run('logs', '--since', 'not-a-date')[0] == EXIT_VALIDATION


class TestStatsAndVerify:

    def test_stats(self, run):
        run('grant', 'npm:a')
        run('grant', 'github:acme/kit')
        code, out = run('stats')
        stats = json.loads(out)
        assert code == EXIT_OK
        assert stats['total'] == 2
        assert stats['by_source']['github'] == 1
        assert stats['audit_by_action'] == {'grant': 2}

    def test_verify_clean(self, run):
        run('grant', 'npm:a')
        code, out = run('verify')
        assert code == EXIT_OK
        assert json.loads(out)['chain']['ok'] is True

    def test_verify_tampered_chain(self, run, tmp_path):
        run('grant', 'npm:a')
        run('grant', 'npm:b')
        export_path = str(tmp_path / "snapshot.json")
        run('export', '--output', export_path)
        with open(export_path) as f:
            data = json.load(f)
        data['audit'][0]['context'] = 'edited'
        with open(export_path, 'w') as f:
            json.dump(data, f)

        assert run('import', export_path, '--yes')[0] == EXIT_OK
        code, out = run('verify')
        assert code == EXIT_CORRUPTED
        assert json.loads(out)['chain']['broken_at'] == 1


class TestImportExportReset:

    def test_export_stdout(self, run):
        run('grant', 'npm:a')
        code, out = run('export')
        data = json.loads(out)
        assert code == EXIT_OK
        assert [e['creator_id'] for e in data['entries']] == ['npm:a']

    def test_import_requires_confirmation(self, run, tmp_path):
        run('grant', 'npm:a')
        path = tmp_path / "snap.json"
        run('export', '--output', str(path))
        code, out = run('import', str(path))
        assert code == EXIT_DECLINED
        assert json.loads(out)['type'] == 'Declined'

    def test_import_merge_needs_no_confirmation(self, run, tmp_path, home):
        run('grant', 'npm:a')
        path = tmp_path / "snap.json"
        run('export', '--output', str(path))
        other = str(tmp_path / "other")
        assert main(['--json', '--home', other, 'import', str(path), '--merge']) == EXIT_OK
        assert main(['--json', '--home', other, 'check', 'npm:a']) == EXIT_OK

    @pytest.mark.parametrize("content", ["not json", '{"version": 99}', '[]'])
    def test_import_rejects_bad_files(self, run, tmp_path, content):
        path = tmp_path / "bad.json"
        path.write_text(content)
        assert run('import', str(path), '--yes')[0] == EXIT_VALIDATION

    def test_import_missing_file(self, run, tmp_path):
        assert run('import', str(tmp_path / "nope.json"), '--yes')[0] == EXIT_VALIDATION

    def test_reset(self, run):
        run('grant', 'npm:a')
        run('block', 'npm:b', '--reason', 'spam')
        assert run('reset')[0] == EXIT_DECLINED
        code, out = run('reset', '--yes')
        assert code == EXIT_OK
        assert json.loads(out)['removed'] == ['npm:a', 'npm:b']
        assert json.loads(run('list')[1]) == []


class TestMain:

    def test_no_command_prints_help(self, capsys):
        assert main([]) == EXIT_VALIDATION
        assert 'usage' in capsys.readouterr().out.lower()

    def test_store_option(self, tmp_path, capsys):
        store = tmp_path / "custom" / "trust.json"
        assert main(['--store', str(store), '--home', str(tmp_path), 'grant', 'npm:a']) == EXIT_OK
        assert store.exists()
