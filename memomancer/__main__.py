from .cli import cli


def launch():
    cli(prog_name='memomancer')


if __name__ == '__main__':
    launch()
