from cantina_bot.main import run

run()
